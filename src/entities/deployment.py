"""DeploymentState and DeploymentSlot models — the deployment ledger."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class DeploymentStatus(str, enum.Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"


class DeploymentState(Base):
    __tablename__ = "deployment_states"
    __table_args__ = (
        Index("ix_deployment_states_service_env", "service", "environment"),
        Index(
            "uq_active_deployment",
            "service",
            "environment",
            unique=True,
            sqlite_where=text("active"),
            postgresql_where=text("active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    service: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    environment: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    deployed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    deployed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    git_sha: Mapped[str] = mapped_column(String(40), nullable=True)
    failure_reason: Mapped[str] = mapped_column(Text, nullable=True)


class DeploymentSlot(Base):
    """Arena entry for one (service, environment) key.

    ``revision`` is compared-and-swapped on every activation so two
    concurrent activations cannot both win.
    """

    __tablename__ = "deployment_slots"

    service: Mapped[str] = mapped_column(String(255), primary_key=True)
    environment: Mapped[str] = mapped_column(String(100), primary_key=True)
    active_deployment_id: Mapped[str] = mapped_column(String(36), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
