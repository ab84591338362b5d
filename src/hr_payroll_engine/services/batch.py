"""Best-effort batch execution with per-entity savepoints."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.errors import PayrollEngineError

logger = logging.getLogger(__name__)


@dataclass
class BatchFailure:
    id: UUID
    error: str
    code: str


@dataclass
class BatchResult:
    """Outcome of a bulk operation: what succeeded, what failed and why."""

    succeeded: list[UUID] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def affected_rows(self) -> int:
        return len(self.succeeded)

    def record_failure(self, entity_id: UUID, exc: Exception) -> None:
        code = exc.code if isinstance(exc, PayrollEngineError) else "INTERNAL_ERROR"
        self.failed.append(BatchFailure(id=entity_id, error=str(exc), code=code))


async def run_batch(
    session: AsyncSession,
    entity_ids: Iterable[UUID],
    operation: Callable[[UUID], Awaitable[Any]],
    result: BatchResult | None = None,
) -> BatchResult:
    """Run ``operation`` once per id, each inside its own savepoint.

    A failure rolls back only that entity's work and is recorded; the
    remaining ids are still processed.
    """
    result = result or BatchResult()
    seen: set[UUID] = set()

    for entity_id in entity_ids:
        if entity_id in seen:
            continue
        seen.add(entity_id)
        try:
            async with session.begin_nested():
                await operation(entity_id)
        except PayrollEngineError as e:
            logger.warning("Batch operation failed for %s: %s", entity_id, e)
            result.record_failure(entity_id, e)
        except Exception as e:
            logger.exception("Unexpected error in batch operation for %s", entity_id)
            result.record_failure(entity_id, e)
        else:
            result.succeeded.append(entity_id)

    return result
