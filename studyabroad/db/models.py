"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Money is stored in major units
as NUMERIC(12, 2); conversion to gateway minor units happens at the edge.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from studyabroad.models.api import ServiceType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class User(TimestampMixin, Base):
    """
    ORM model for users table.

    Credentials are argon2 hashes; one-time tokens and the current refresh
    token are stored as SHA-256 hashes only.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    username: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="student")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Email verification
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verification_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verification_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Password reset
    password_reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    password_reset_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    refresh_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('student', 'counsellor')", name="ck_users_role"),
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("username", name="uq_users_username"),
        Index(
            "idx_users_verification_token",
            "verification_token_hash",
            postgresql_where=text("verification_token_hash IS NOT NULL"),
        ),
        Index(
            "idx_users_password_reset_token",
            "password_reset_token_hash",
            postgresql_where=text("password_reset_token_hash IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, active={self.is_active})>"


class DeviceSession(Base):
    """
    ORM model for device_sessions table.

    One row per login. The partial unique index allows at most one
    `is_active` row per user; concurrent logins race on that index.
    """

    __tablename__ = "device_sessions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Device fingerprint and display details
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    # SHA-256 of issued tokens
    access_token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    refresh_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    login_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    logout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_device_sessions_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
        ),
        Index("idx_device_sessions_access_token", "access_token_hash"),
        Index("idx_device_sessions_user_login", "user_id", "login_at"),
        Index(
            "idx_device_sessions_logout_at",
            "logout_at",
            postgresql_where=text("NOT is_active"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DeviceSession(id={self.id}, user_id={self.user_id}, "
            f"device={self.device_name}, active={self.is_active})>"
        )


class Transaction(TimestampMixin, Base):
    """
    ORM model for transactions table.

    One row per checkout session. `service_type` + `service_id` reference
    exactly one purchase row in the table selected by `service_type`.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    service_type: Mapped[str] = mapped_column(String(30), nullable=False)
    service_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_gateway: Mapped[str] = mapped_column(String(30), nullable=False, default="stripe")
    stripe_session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'cancelled')",
            name="ck_transactions_payment_status",
        ),
        CheckConstraint(
            "service_type IN ('research_paper', 'visa_application', 'counselling')",
            name="ck_transactions_service_type",
        ),
        UniqueConstraint("stripe_session_id", name="uq_transactions_stripe_session_id"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_service", "service_type", "service_id"),
        Index("idx_transactions_payment_status", "payment_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, service={self.service_type}/{self.service_id}, "
            f"amount={self.amount} {self.currency}, status={self.payment_status})>"
        )


class PurchaseMixin(TimestampMixin):
    """Columns shared by every service purchase table."""

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    @declared_attr
    def user_id(cls) -> Mapped[UUID]:
        return mapped_column(
            PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        )

    # Customer details
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Pricing
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    actual_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Payment
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Workflow
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="initiated")
    case_status: Mapped[str] = mapped_column(String(10), nullable=False, default="open")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    service_type: ClassVar[ServiceType]

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id}, user_id={self.user_id}, "
            f"payment_status={self.payment_status}, status={self.status})>"
        )


def _purchase_table_args(table: str) -> tuple:
    return (
        CheckConstraint("final_amount > 0", name=f"ck_{table}_final_amount_positive"),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'cancelled')",
            name=f"ck_{table}_payment_status",
        ),
        CheckConstraint(
            "status IN ('initiated', 'in_progress', 'scheduled', 'completed', 'cancelled')",
            name=f"ck_{table}_status",
        ),
        CheckConstraint("case_status IN ('open', 'closed')", name=f"ck_{table}_case_status"),
        Index(f"idx_{table}_user_created", "user_id", "created_at"),
    )


class ResearchPaperPurchase(PurchaseMixin, Base):
    __tablename__ = "research_paper_purchases"

    co_authors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    research_group: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)

    service_type = ServiceType.RESEARCH_PAPER
    __table_args__ = _purchase_table_args("research_paper_purchases")


class VisaApplicationPurchase(PurchaseMixin, Base):
    __tablename__ = "visa_application_purchases"

    country: Mapped[str] = mapped_column(String(100), nullable=False)
    dependents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mocks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_months: Mapped[int | None] = mapped_column(Integer, nullable=True)

    service_type = ServiceType.VISA_APPLICATION
    __table_args__ = _purchase_table_args("visa_application_purchases")


class CounsellingPurchase(PurchaseMixin, Base):
    __tablename__ = "counselling_purchases"

    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    counsellor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    preferred_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    service_type = ServiceType.COUNSELLING
    __table_args__ = _purchase_table_args("counselling_purchases")


AnyPurchase = ResearchPaperPurchase | VisaApplicationPurchase | CounsellingPurchase

PURCHASE_MODELS: dict[ServiceType, type[AnyPurchase]] = {
    ServiceType.RESEARCH_PAPER: ResearchPaperPurchase,
    ServiceType.VISA_APPLICATION: VisaApplicationPurchase,
    ServiceType.COUNSELLING: CounsellingPurchase,
}


class AdminOtp(Base):
    """
    ORM model for admin_otps table.

    One row per issued code; only the SHA-256 of the code is stored.
    """

    __tablename__ = "admin_otps"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_admin_otps_attempts_non_negative"),
        Index("idx_admin_otps_email_created", "email", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AdminOtp(id={self.id}, email={self.email}, used={self.is_used})>"
