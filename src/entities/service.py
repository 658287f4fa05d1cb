"""Service and ServiceVersion models — the service directory."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class ServiceRole(str, enum.Enum):
    CONSUMER = "consumer"
    PROVIDER = "provider"


class SpecType(str, enum.Enum):
    OPENAPI = "openapi"
    GRAPHQL = "graphql"
    ASYNCAPI = "asyncapi"
    GRPC = "grpc"
    SOAP = "soap"


class Service(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_consumer: Mapped[bool] = mapped_column(Boolean, default=False)
    is_provider: Mapped[bool] = mapped_column(Boolean, default=False)
    spec_type: Mapped[str] = mapped_column(String(20), default=SpecType.OPENAPI.value)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    git_repository_url: Mapped[str] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def roles(self) -> list[str]:
        roles = []
        if self.is_consumer:
            roles.append(ServiceRole.CONSUMER.value)
        if self.is_provider:
            roles.append(ServiceRole.PROVIDER.value)
        return roles

    def has_role(self, role: str) -> bool:
        return role in self.roles


class ServiceVersion(Base):
    """Immutable snapshot of a service at one version.

    A new upload creates a new row; existing rows are never updated.
    """

    __tablename__ = "service_versions"
    __table_args__ = (
        UniqueConstraint("service_name", "role", "version", name="uq_service_role_version"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    service_id: Mapped[str] = mapped_column(String(36), ForeignKey("services.id"), nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[str] = mapped_column(String(100), nullable=False)
    git_sha: Mapped[str] = mapped_column(String(40), nullable=True)
    spec: Mapped[dict] = mapped_column(JSON, nullable=True)
    package_json: Mapped[dict] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
