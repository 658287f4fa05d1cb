"""Interaction model — one recorded consumer request/response pair.

Rows are evidence: inserted once, never updated or deleted.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class Interaction(Base):
    __tablename__ = "interactions"
    __table_args__ = (
        Index("ix_interactions_pair_version", "consumer", "consumer_version", "provider"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_version: Mapped[str] = mapped_column(String(100), nullable=True)
    operation: Mapped[str] = mapped_column(String(255), nullable=False)
    consumer: Mapped[str] = mapped_column(String(255), nullable=False)
    consumer_version: Mapped[str] = mapped_column(String(100), nullable=False)
    consumer_git_sha: Mapped[str] = mapped_column(String(40), nullable=True)
    environment: Mapped[str] = mapped_column(String(100), nullable=False)  # test context, not a deploy env
    request: Mapped[dict] = mapped_column(JSON, nullable=False)
    response: Mapped[dict] = mapped_column(JSON, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=True)
    contract_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contracts.id"), nullable=True, index=True
    )

    def as_evidence(self) -> dict:
        """Snapshot stored on a verification task."""
        return {
            "id": self.id,
            "operation": self.operation,
            "provider_version": self.provider_version,
            "request": self.request,
            "response": self.response,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
