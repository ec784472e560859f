"""Database models for the kiné platform."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class Kine(Base):
    """Physiotherapist account, linked to a Firebase user."""

    __tablename__ = "kines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Firebase integration
    uid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)

    email: Mapped[str | None] = mapped_column(String(320))
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    referral_code: Mapped[str | None] = mapped_column(String(16), unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    subscription: Mapped["Subscription | None"] = relationship(
        back_populates="kine", uselist=False
    )
    patients: Mapped[list["Patient"]] = relationship(back_populates="kine")

    def __repr__(self) -> str:
        return f"<Kine(id={self.id})>"


class Subscription(Base):
    """
    Paid subscription of a kiné.

    One row per kiné, so a kiné never holds two live subscriptions. Status
    transitions are owned by the Stripe webhook handlers.
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kine_id: Mapped[int] = mapped_column(
        ForeignKey("kines.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))

    plan_type: Mapped[str | None] = mapped_column(String(20))  # kept after cancellation
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Stripe `created` timestamp of the newest event applied to this row
    last_event_created: Mapped[int | None] = mapped_column(BigInteger)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    kine: Mapped[Kine] = relationship(back_populates="subscription")

    __table_args__ = (Index("idx_subscriptions_customer", "stripe_customer_id"),)

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, kine_id={self.kine_id}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Provider event already handled (idempotency key)."""

    __tablename__ = "processed_webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="stripe")
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    detail: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent({self.event_id}, {self.event_type}, {self.outcome})>"


class Referral(Base):
    """A kiné (referrer) who brought another kiné (referee) to a paid plan."""

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(ForeignKey("kines.id"), nullable=False)
    referee_id: Mapped[int] = mapped_column(
        ForeignKey("kines.id"), unique=True, nullable=False
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    plan_subscribed: Mapped[str | None] = mapped_column(String(20))
    credit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # cents
    referrer_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referee_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    referrer: Mapped[Kine] = relationship(foreign_keys=[referrer_id])
    referee: Mapped[Kine] = relationship(foreign_keys=[referee_id])

    __table_args__ = (Index("idx_referrals_referrer_status", "referrer_id", "status"),)


class Notification(Base):
    """Dashboard notification for a kiné."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kine_id: Mapped[int] = mapped_column(
        ForeignKey("kines.id", ondelete="CASCADE"), nullable=False
    )
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"))
    programme_id: Mapped[int | None] = mapped_column(ForeignKey("programmes.id"))
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_notifications_kine_read", "kine_id", "is_read"),
        Index("idx_notifications_kine_created", "kine_id", "created_at"),
    )


class Patient(Base):
    """Patient followed by a kiné."""

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kine_id: Mapped[int] = mapped_column(
        ForeignKey("kines.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))
    whatsapp_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    kine: Mapped[Kine] = relationship(back_populates="patients")
    programmes: Mapped[list["Programme"]] = relationship(back_populates="patient")


class Programme(Base):
    """Rehabilitation programme assigned to a patient."""

    __tablename__ = "programmes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    date_fin: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    patient: Mapped[Patient] = relationship(back_populates="programmes")


class MessageSendHistory(Base):
    """Audit trail of messages accepted by a provider."""

    __tablename__ = "message_send_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kine_id: Mapped[int] = mapped_column(ForeignKey("kines.id"), nullable=False)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"))
    programme_id: Mapped[int | None] = mapped_column(ForeignKey("programmes.id"))
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    template_name: Mapped[str | None] = mapped_column(String(100))
    provider_message_id: Mapped[str | None] = mapped_column(String(255))
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_message_history_kine_sent", "kine_id", "sent_at"),)


class ChatMessage(Base):
    """Message exchanged between a kiné and the assistant."""

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kine_id: Mapped[int] = mapped_column(
        ForeignKey("kines.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # 'user' or 'assistant'
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_chat_messages_kine_created", "kine_id", "created_at"),)
