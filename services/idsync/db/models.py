"""
SQLAlchemy database models for idsync.

All models use:
- UUIDv7 primary keys (time-sortable)
- snake_case column names
- Plural table names
- TIMESTAMPTZ with UTC for all timestamps
- Enum values stored as strings (no native PG enums)
"""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Sequence,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .enums import (
    IdentityProviderCategory,
    IdentityType,
    ProcessStepStatus,
    ProcessStepType,
    ProcessType,
    ServiceAccountKind,
    ServiceAccountType,
    UserStatus,
)


def generate_uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-sortable UUID)."""
    # UUIDv7: timestamp in first 48 bits, version in bits 48-51, random in rest
    timestamp_ms = int(time.time() * 1000)
    rand_bytes = uuid.uuid4().bytes[6:]

    uuid_bytes = (
        timestamp_ms.to_bytes(6, "big")
        + bytes([0x70 | (rand_bytes[0] & 0x0F)])  # Version 7
        + bytes([0x80 | (rand_bytes[1] & 0x3F)])  # Variant
        + rand_bytes[2:]
    )
    return uuid.UUID(bytes=uuid_bytes)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def _enum(enum_cls: type) -> Enum:
    return Enum(enum_cls, native_enum=False, length=63, validate_strings=True)


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


# Source of the numeric suffix of generated service-account client ids.
# nextval() is atomic across sessions, so concurrent creators never collide.
client_sequence = Sequence("client_sequence", start=1, metadata=Base.metadata)


class Company(Base):
    """A participant company. Owns users, service accounts and identity providers."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_partner_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class Identity(Base):
    """Common identity row of company users and service accounts.

    user_entity_id is the id of the matching user in the IAM gateway; it is
    the lookup key for callers authenticated by the gateway.
    """

    __tablename__ = "identities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    user_status: Mapped[UserStatus] = mapped_column(_enum(UserStatus), nullable=False)
    identity_type: Mapped[IdentityType] = mapped_column(_enum(IdentityType), nullable=False)
    user_entity_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, unique=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class CompanyUser(Base):
    """Human user of a company; shares its primary key with identities.id."""

    __tablename__ = "company_users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True
    )
    firstname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lastname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class UserRole(Base):
    """A role of an owning IAM client that can be assigned to identities."""

    __tablename__ = "user_roles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    client_client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (UniqueConstraint("client_client_id", "user_role"),)


class IdentityAssignedRole(Base):
    """Role assignment of an identity."""

    __tablename__ = "identity_assigned_roles"

    identity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True
    )
    user_role_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_roles.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class CompanyServiceAccount(Base):
    """Service account record; shares its primary key with identities.id.

    client_client_id is null while an EXTERNAL account is still PENDING.
    """

    __tablename__ = "company_service_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    client_client_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    service_account_type: Mapped[ServiceAccountType] = mapped_column(
        _enum(ServiceAccountType), nullable=False
    )
    service_account_kind: Mapped[ServiceAccountKind] = mapped_column(
        _enum(ServiceAccountKind), nullable=False
    )
    offer_subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )


class Process(Base):
    """Durable record of an asynchronous multi-step workflow."""

    __tablename__ = "processes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    process_type: Mapped[ProcessType] = mapped_column(_enum(ProcessType), nullable=False)
    lock_expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), default=uuid.uuid4, nullable=False
    )


class ProcessStep(Base):
    """One step of a process; steps of a process are ordered by creation."""

    __tablename__ = "process_steps"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    process_step_type: Mapped[ProcessStepType] = mapped_column(
        _enum(ProcessStepType), nullable=False
    )
    process_step_status: Mapped[ProcessStepStatus] = mapped_column(
        _enum(ProcessStepStatus), nullable=False
    )
    process_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("processes.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    date_last_changed: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (Index("ix_process_steps_process_created", "process_id", "date_created"),)


class DimUserCreationData(Base):
    """Links the primary service account to the process provisioning its external twin."""

    __tablename__ = "dim_user_creation_data"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    service_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("company_service_accounts.id"), nullable=False
    )
    process_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("processes.id"), nullable=False
    )


class IdentityProvider(Base):
    """Identity provider configured for a company, addressed in the gateway by alias."""

    __tablename__ = "identity_providers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    category: Mapped[IdentityProviderCategory] = mapped_column(
        _enum(IdentityProviderCategory), nullable=False
    )
    alias: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class AuditLog(Base):
    """Audit log for provisioning and reconciliation actions."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    target_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
