"""VerificationTask and VerificationResult models — the compatibility matrix."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class VerificationTask(Base):
    """A pending request for a provider version to verify a consumer version."""

    __tablename__ = "verification_tasks"
    __table_args__ = (
        # At most one open task per tuple; closed tasks are kept for history.
        Index(
            "uq_open_verification_task",
            "consumer",
            "consumer_version",
            "provider",
            "provider_version",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    contract_id: Mapped[str] = mapped_column(String(36), ForeignKey("contracts.id"), nullable=True)
    provider: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider_version: Mapped[str] = mapped_column(String(100), nullable=False)
    consumer: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    consumer_version: Mapped[str] = mapped_column(String(100), nullable=False)
    interactions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


class VerificationResult(Base):
    """Immutable outcome of one verification run. Re-verification appends a new row."""

    __tablename__ = "verification_results"
    __table_args__ = (
        Index(
            "ix_verification_results_tuple",
            "consumer",
            "consumer_version",
            "provider",
            "provider_version",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("verification_tasks.id"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_version: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_git_sha: Mapped[str] = mapped_column(String(40), nullable=True)
    consumer: Mapped[str] = mapped_column(String(255), nullable=False)
    consumer_version: Mapped[str] = mapped_column(String(100), nullable=False)
    spec_type: Mapped[str] = mapped_column(String(20), default="openapi")
    outcomes: Mapped[list] = mapped_column(JSON, nullable=False)
    passed: Mapped[int] = mapped_column(Integer, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    @property
    def summary(self) -> dict:
        return {"passed": self.passed, "failed": self.failed, "total": self.total}

    @property
    def succeeded(self) -> bool:
        return self.total > 0 and self.failed == 0
