"""
Bulk approve/reject. Every id is transitioned on its own session so one bad row
never blocks or rolls back the others; the caller gets one outcome per id.
"""

import asyncio
import logging
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.enums import BulkOutcome
from app.core.exceptions import InvalidTransitionError, ServiceError, ValidationError

from . import service
from .schemas import BulkItemResult, BulkTransitionResponse

logger = logging.getLogger(__name__)


def _unique(ids: Iterable[UUID]) -> List[UUID]:
    seen = set()
    ordered = []
    for rid in ids:
        if rid not in seen:
            seen.add(rid)
            ordered.append(rid)
    return ordered


async def bulk_transition(
    session_factory: async_sessionmaker,
    registration_ids: Iterable[UUID],
    target_status,
    *,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
    max_concurrency: Optional[int] = None,
) -> BulkTransitionResponse:
    """
    Apply ``target_status`` to each registration independently.

    Only a structurally invalid request (no ids, unknown status) raises
    ValidationError. Missing ids, registrations that are no longer pending and
    store errors are reported per item with outcome ``error``.
    """
    ids = _unique(registration_ids)
    if not ids:
        raise ValidationError("Select at least one registration")
    target = service.parse_target_status(target_status)
    semaphore = asyncio.Semaphore(max_concurrency or settings.bulk_max_concurrency)

    async def _apply(registration_id: UUID) -> BulkItemResult:
        async with semaphore:
            async with session_factory() as db:
                try:
                    await service.transition(
                        db,
                        registration_id,
                        target,
                        performed_by=performed_by,
                        performed_by_role=performed_by_role,
                    )
                except InvalidTransitionError as e:
                    # Stale selection: someone else already decided this one
                    logger.warning("Bulk %s skipped registration %s: %s", target, registration_id, e.message)
                    return BulkItemResult(
                        id=registration_id, outcome=BulkOutcome.ERROR, message=e.message, error_code=e.code,
                    )
                except ServiceError as e:
                    return BulkItemResult(
                        id=registration_id, outcome=BulkOutcome.ERROR, message=e.message, error_code=e.code,
                    )
                except SQLAlchemyError as e:
                    await db.rollback()
                    logger.exception("Bulk %s failed for registration %s", target, registration_id)
                    return BulkItemResult(
                        id=registration_id,
                        outcome=BulkOutcome.ERROR,
                        message=f"Could not update registration: {e.__class__.__name__}",
                        error_code="STORE_ERROR",
                    )
                return BulkItemResult(id=registration_id, outcome=BulkOutcome.OK, message=f"Registration {target}")

    results = await asyncio.gather(*(_apply(rid) for rid in ids))
    succeeded = sum(1 for r in results if r.outcome == BulkOutcome.OK)
    logger.info(
        "Bulk %s by %s: %d requested, %d succeeded, %d failed",
        target, performed_by, len(results), succeeded, len(results) - succeeded,
    )
    return BulkTransitionResponse(
        target_status=target,
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=list(results),
    )
