"""Conditional status updates shared by the lifecycles."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.errors import InvalidTransition

logger = logging.getLogger(__name__)


async def advance_status(
    session: AsyncSession,
    entity: Any,
    pk_attr: str,
    from_statuses: Iterable[str],
    to_status: str,
    reason: str | None = None,
    **values: Any,
) -> None:
    """Move ``entity`` to ``to_status`` only if it is still in ``from_statuses``.

    The update is conditional on the stored status, so of two concurrent
    transitions from the same status exactly one succeeds; the other sees
    the advanced state and raises InvalidTransition.
    """
    model = type(entity)
    entity_id = getattr(entity, pk_attr)
    sources = list(from_statuses)

    await session.flush()
    result = await session.execute(
        update(model)
        .where(getattr(model, pk_attr) == entity_id, model.status.in_(sources))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(entity)

    if result.rowcount == 0:
        raise InvalidTransition(
            entity.status,
            to_status,
            reason or f"expected status in {sources}",
            entity_id=entity_id,
        )

    logger.info("%s %s -> %s", model.__name__, entity_id, to_status)
