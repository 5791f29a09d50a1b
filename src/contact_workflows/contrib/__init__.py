"""Optional integrations for contact-workflows.

This module contains scheduling gateways for durable job queues. Each
integration requires installing the corresponding extra:

- ``arq``: Async Redis Queue (``pip install contact-workflows[arq]``)

Example:
    .. code-block:: python

        # When arq extra is installed
        from contact_workflows.contrib.arq import ArqSchedulingGateway

        gateway = ArqSchedulingGateway(redis)
        coordinator = ExecutionCoordinator(session_maker, gateway=gateway, ...)
"""

from __future__ import annotations

__all__: list[str] = []  # pragma: no cover
