"""Condition evaluation for CONDITION steps.

Conditions use the same field and operator vocabulary as segment filters so a
rule written for a segment behaves the same inside a workflow:

- standard contact fields: ``email`` (case-insensitive string), ``subscribed``
  (boolean), ``createdAt`` and ``updatedAt`` (dates), also reachable with a
  ``contact.`` prefix;
- ``data.<path>``: the contact's custom data;
- ``workflow.<path>`` and ``context.<path>``: the execution context;
- ``event.<path>``: the record of the event that started or resumed the
  execution (``name``, ``data``, ``receivedAt``).

Evaluation is a pure function of the condition, the contact snapshot, the
execution context and the current time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from contact_workflows.core.types import ConditionOperator, TimeUnit
from contact_workflows.exceptions import ConditionConfigError

if TYPE_CHECKING:
    from collections.abc import Callable

    from contact_workflows.core.models import ContactSnapshot

__all__ = [
    "ConditionEvaluator",
    "ConditionLike",
    "FieldKind",
    "resolve_field",
    "validate_condition",
]


class FieldKind(Enum):
    """How a field's value is interpreted."""

    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"


class ConditionLike(Protocol):
    """Structural type of a condition config."""

    field: str
    operator: ConditionOperator | str
    value: Any
    unit: TimeUnit | str | None


STANDARD_FIELDS: dict[str, FieldKind] = {
    "email": FieldKind.STRING,
    "subscribed": FieldKind.BOOLEAN,
    "createdAt": FieldKind.DATE,
    "updatedAt": FieldKind.DATE,
}

JSON_NAMESPACES = ("data", "workflow", "context", "event")

_ORDERING = frozenset(
    {
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_THAN_OR_EQUAL,
        ConditionOperator.LESS_THAN_OR_EQUAL,
    },
)

ALLOWED_OPERATORS: dict[FieldKind, frozenset[ConditionOperator]] = {
    FieldKind.STRING: frozenset(
        {
            ConditionOperator.EQUALS,
            ConditionOperator.NOT_EQUALS,
            ConditionOperator.CONTAINS,
            ConditionOperator.NOT_CONTAINS,
        },
    ),
    FieldKind.BOOLEAN: frozenset({ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS}),
    FieldKind.DATE: _ORDERING | {ConditionOperator.WITHIN},
    FieldKind.JSON: frozenset(ConditionOperator),
}

VALUELESS_OPERATORS = frozenset({ConditionOperator.EXISTS, ConditionOperator.NOT_EXISTS})

_MISSING = object()


def resolve_field(name: str) -> tuple[FieldKind, str, list[str]]:
    """Split a condition field into its kind, namespace and path.

    Args:
        name: Field as written in the condition, e.g. ``data.plan``.

    Returns:
        Tuple of (kind, namespace, path segments). Standard fields use the
        ``contact`` namespace and a single path segment.

    Raises:
        ConditionConfigError: If the field is not recognised.
    """
    if not isinstance(name, str) or not name:
        raise ConditionConfigError("field is required")

    standard = name.removeprefix("contact.")
    if standard in STANDARD_FIELDS:
        return STANDARD_FIELDS[standard], "contact", [standard]

    namespace, _, path = name.partition(".")
    if namespace in JSON_NAMESPACES and path:
        segments = path.split(".")
        if all(segments):
            return FieldKind.JSON, namespace, segments

    raise ConditionConfigError(f"unknown field '{name}'")


def _coerce_operator(operator: ConditionOperator | str) -> ConditionOperator:
    try:
        return ConditionOperator(operator)
    except ValueError:
        raise ConditionConfigError(f"unknown operator '{operator}'") from None


def validate_condition(condition: ConditionLike) -> None:
    """Check a condition at edit time.

    Args:
        condition: The condition to check.

    Raises:
        ConditionConfigError: If the field or operator is unknown, the operator
            does not apply to the field, or a required value or unit is missing.
    """
    kind, _, _ = resolve_field(condition.field)
    operator = _coerce_operator(condition.operator)

    if operator not in ALLOWED_OPERATORS[kind]:
        raise ConditionConfigError(f"operator '{operator}' is not supported for field '{condition.field}'")

    if operator not in VALUELESS_OPERATORS and condition.value is None:
        raise ConditionConfigError(f"operator '{operator}' requires a value")

    if operator == ConditionOperator.WITHIN:
        if condition.unit is None:
            raise ConditionConfigError("operator 'within' requires a unit")
        try:
            TimeUnit(condition.unit)
        except ValueError:
            raise ConditionConfigError(f"unknown unit '{condition.unit}'") from None
        if _to_number(condition.value) is None:
            raise ConditionConfigError("operator 'within' requires a numeric value")


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _json_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual is expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    return actual == expected


def _compare(operator: ConditionOperator, left: Any, right: Any) -> bool:
    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    if operator == ConditionOperator.LESS_THAN:
        return left < right
    if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    return left <= right


def _lookup(root: Any, path: list[str]) -> Any:
    current = root
    for segment in path:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


class ConditionEvaluator:
    """Evaluates a CONDITION step's rule against a contact and execution context.

    Args:
        clock: Callable returning the current UTC time, used by ``within``.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def evaluate(
        self,
        condition: ConditionLike,
        *,
        contact: ContactSnapshot,
        context: dict[str, Any],
    ) -> bool:
        """Evaluate a validated condition.

        Args:
            condition: The condition to evaluate.
            contact: The contact the execution runs for.
            context: The execution context.

        Returns:
            True if the condition holds.
        """
        kind, _, _ = resolve_field(condition.field)
        operator = _coerce_operator(condition.operator)
        actual = self._resolve(condition.field, contact, context)

        if kind is FieldKind.STRING:
            return self._evaluate_string(operator, actual, condition.value)
        if kind is FieldKind.BOOLEAN:
            matched = bool(actual) == (condition.value is True)
            return matched if operator == ConditionOperator.EQUALS else not matched
        if kind is FieldKind.DATE:
            return self._evaluate_date(operator, _to_datetime(actual), condition)
        return self._evaluate_json(operator, actual, condition)

    def actual_value(
        self,
        condition: ConditionLike,
        *,
        contact: ContactSnapshot,
        context: dict[str, Any],
    ) -> Any:
        """Resolve the value the condition's field points at.

        Returns:
            The resolved value, or None when the path does not exist.
        """
        actual = self._resolve(condition.field, contact, context)
        return None if actual is _MISSING else actual

    def _resolve(self, field: str, contact: ContactSnapshot, context: dict[str, Any]) -> Any:
        kind, namespace, path = resolve_field(field)
        if kind is FieldKind.STRING:
            return contact.email
        if kind is FieldKind.BOOLEAN:
            return contact.subscribed
        if kind is FieldKind.DATE:
            return contact.created_at if path[0] == "createdAt" else contact.updated_at

        if namespace == "data":
            root: Any = contact.data
        elif namespace == "event":
            root = context.get("event", {})
        else:
            root = context
        return _lookup(root, path)

    def _evaluate_string(self, operator: ConditionOperator, actual: str | None, expected: Any) -> bool:
        haystack = (actual or "").lower()
        needle = str(expected).lower()
        if operator == ConditionOperator.EQUALS:
            return haystack == needle
        if operator == ConditionOperator.NOT_EQUALS:
            return haystack != needle
        if operator == ConditionOperator.CONTAINS:
            return needle in haystack
        return needle not in haystack

    def _evaluate_date(
        self,
        operator: ConditionOperator,
        actual: datetime | None,
        condition: ConditionLike,
    ) -> bool:
        if actual is None:
            return False
        if operator == ConditionOperator.WITHIN:
            amount = _to_number(condition.value)
            if amount is None or condition.unit is None:
                return False
            window = timedelta(milliseconds=amount * TimeUnit(condition.unit).milliseconds)
            return actual >= self._clock() - window
        if operator in _ORDERING:
            expected = _to_datetime(condition.value)
            return expected is not None and _compare(operator, actual, expected)
        return False

    def _evaluate_json(self, operator: ConditionOperator, actual: Any, condition: ConditionLike) -> bool:
        expected = condition.value
        present = actual is not _MISSING

        if operator == ConditionOperator.EXISTS:
            return present and actual is not None
        if operator == ConditionOperator.NOT_EXISTS:
            return not present or actual is None
        if operator == ConditionOperator.EQUALS:
            return present and _json_equal(actual, expected)
        if operator == ConditionOperator.NOT_EQUALS:
            return not (present and _json_equal(actual, expected))
        if operator == ConditionOperator.CONTAINS:
            return present and isinstance(actual, str) and str(expected) in actual
        if operator == ConditionOperator.NOT_CONTAINS:
            return not (present and isinstance(actual, str) and str(expected) in actual)
        if not present:
            return False
        if operator == ConditionOperator.WITHIN:
            return self._evaluate_date(operator, _to_datetime(actual), condition)

        left, right = _to_number(actual), _to_number(expected)
        if left is not None and right is not None:
            return _compare(operator, left, right)
        if isinstance(actual, str) and isinstance(expected, str):
            return _compare(operator, actual, expected)
        return False
