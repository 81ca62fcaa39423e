"""Audit log model."""

import uuid
from typing import Any, Optional

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, JSONType


class AuditLog(BaseModel):
    """Append-only record of back-office and pipeline actions."""

    __tablename__ = "audit_logs"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    changes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
