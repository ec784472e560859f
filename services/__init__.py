"""Services package for business logic."""

from .messaging_service import MessagingService, SendResult
from .notification_service import NotificationService
from .referral_service import ReferralService
from .subscription_service import SubscriptionService
from .webhook_dispatcher import StripeWebhookDispatcher, stripe_dispatcher

__all__ = [
    "MessagingService",
    "NotificationService",
    "ReferralService",
    "SendResult",
    "StripeWebhookDispatcher",
    "SubscriptionService",
    "stripe_dispatcher",
]
