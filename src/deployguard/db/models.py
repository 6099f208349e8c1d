from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PolicySnapshotModel(Base):
    """Immutable policy snapshot. Rows are never updated."""

    __tablename__ = "policy_snapshots"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    policies: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_policy_snapshots_created", "created_at"),)


class VerdictModel(Base):
    """Append-only verdict record."""

    __tablename__ = "verdicts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    policy_snapshot_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("policy_snapshots.id"), nullable=False
    )
    fingerprint_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    error_class: Mapped[str] = mapped_column(String(100), nullable=False)
    service: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    proposed_action: Mapped[str] = mapped_column(String(50), nullable=False)
    verdict_type: Mapped[str] = mapped_column(String(50), nullable=False)
    tokens: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    signals: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    playbook_id: Mapped[str | None] = mapped_column(String(255))
    extra_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_verdicts_class_service", "error_class", "service"),
        Index("idx_verdicts_created", "created_at"),
    )


class VerdictAuditLogModel(Base):
    """Append-only verdict audit trail."""

    __tablename__ = "verdict_audit_log"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    verdict_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("verdicts.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    event_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
