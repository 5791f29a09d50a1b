"""SQLAlchemy-backed contact store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from contact_workflows.core.models import ContactSnapshot
from contact_workflows.db.repositories import ContactRepository
from contact_workflows.exceptions import ContactNotFoundError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contact_workflows.db.models import ContactModel

__all__ = ["SQLAlchemyContactStore", "to_snapshot"]


def to_snapshot(contact: ContactModel) -> ContactSnapshot:
    """Copy a contact row into a snapshot."""
    return ContactSnapshot(
        id=contact.id,
        project_id=contact.project_id,
        email=contact.email,
        subscribed=contact.subscribed,
        data=dict(contact.data or {}),
        created_at=contact.created_at,
        updated_at=contact.updated_at,
    )


class SQLAlchemyContactStore:
    """Contact store over the ``contacts`` table.

    Each call runs in its own short transaction.

    Example:
        >>> store = SQLAlchemyContactStore(session_maker)
        >>> await store.merge_data(contact_id, {"plan": "pro"})
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_maker: Factory of sessions to run queries in.
        """
        self.session_maker = session_maker

    async def get(self, contact_id: UUID) -> ContactSnapshot | None:
        async with self.session_maker() as session:
            contact = await ContactRepository(session=session).get_one_or_none(id=contact_id)
            return to_snapshot(contact) if contact else None

    async def merge_data(self, contact_id: UUID, updates: dict[str, Any]) -> ContactSnapshot:
        """Merge values into a contact's custom data under a row lock.

        Args:
            contact_id: The contact.
            updates: Keys to write.

        Returns:
            The contact after the merge.

        Raises:
            ContactNotFoundError: If the contact does not exist.
        """
        async with self.session_maker() as session:
            contact = await ContactRepository(session=session).get_for_update(contact_id)
            if contact is None:
                raise ContactNotFoundError(contact_id)
            # Reassign so the JSON column is flagged dirty
            contact.data = {**(contact.data or {}), **updates}
            await session.flush()
            snapshot = to_snapshot(contact)
            await session.commit()
            return snapshot
