"""
FinLedger - Audit Log Model

Append-only record of balance discrepancies and corrections.
"""

import enum
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from finledger.models.base import BaseModel


class AuditAction(str, enum.Enum):
    BALANCE_DISCREPANCY = "balance_discrepancy"
    BALANCE_CORRECTION = "balance_correction"


class AuditLog(BaseModel):
    __tablename__ = "audit_logs"

    target_entity_type: Mapped[str] = mapped_column(String(50), default="account_owner", nullable=False)
    target_entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    changes: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
