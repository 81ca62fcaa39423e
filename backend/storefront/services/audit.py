"""Audit trail helpers shared by the pipeline services."""

import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models import AuditLog

logger = get_logger(__name__)


async def record_audit(
    session: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: Optional[Any] = None,
    user_id: Optional[uuid.UUID] = None,
    changes: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit entry to the caller's transaction.

    The entry is flushed but not committed, so it is persisted together with
    the state change it describes.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        changes=changes,
    )
    session.add(entry)
    await session.flush()

    logger.debug(
        "Audit entry recorded",
        action=action,
        entity_type=entity_type,
        entity_id=entry.entity_id,
    )
    return entry
