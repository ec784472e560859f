"""Application constants and enumerations."""

from enum import Enum


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class PlanType(str, Enum):
    """Paid plans a kiné can subscribe to."""

    DECLIC = "DECLIC"
    PRATIQUE = "PRATIQUE"
    PIONNIER = "PIONNIER"
    EXPERT = "EXPERT"


class SubscriptionStatus(str, Enum):
    """Subscription status (mirrors Stripe subscription status)."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"

    @classmethod
    def from_stripe(cls, value: str | None) -> "SubscriptionStatus":
        """Map a Stripe status string, treating unknown values as unpaid."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNPAID


# Statuses that grant access to paid features
ACTIVE_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}
)

# Monthly price of each plan, in cents (EUR)
PLAN_MONTHLY_PRICE_CENTS: dict[PlanType, int] = {
    PlanType.DECLIC: 900,
    PlanType.PRATIQUE: 1900,
    PlanType.PIONNIER: 2000,
    PlanType.EXPERT: 5900,
}

# The Pionnier plan is limited to a fixed number of kinés, ever
PIONNIER_MAX_SLOTS = 100


class ReferralStatus(str, Enum):
    """Referral lifecycle."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


MAX_REFERRALS_PER_MONTH = 5
REFERRAL_CODE_BYTES = 3


class NotificationType(str, Enum):
    """Notification kinds shown on the kiné dashboard."""

    PAYMENT_FAILED = "PAYMENT_FAILED"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"
    REFERRAL_CREDITED = "REFERRAL_CREDITED"
    DAILY_VALIDATION = "DAILY_VALIDATION"
    PAIN_ALERT = "PAIN_ALERT"
    PROGRAM_COMPLETED = "PROGRAM_COMPLETED"
    PATIENT_MESSAGE = "PATIENT_MESSAGE"


class MessageMethod(str, Enum):
    """Channels used to reach a patient."""

    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"


class WebhookOutcome(str, Enum):
    """Result of handing one provider event to the dispatcher."""

    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    STALE = "stale"
    FAILED = "failed"
