"""Routing of verified Stripe events to their handlers."""

import logging
from collections.abc import Mapping

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import WebhookOutcome
from core.exceptions import CriticalWebhookError, RecoverableWebhookError
from database.service import DatabaseService
from schemas.webhooks import HandlerResult, StripeEvent
from services.stripe_handlers import DEFAULT_HANDLERS, StripeEventHandler

logger = logging.getLogger(__name__)

# Infrastructure failures: the provider must retry later
CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    OSError,
)


def is_critical_error(error: BaseException) -> bool:
    """Classify a handler failure by type."""
    if isinstance(error, CriticalWebhookError):
        return True
    if isinstance(error, RecoverableWebhookError):
        return False
    if isinstance(error, CONNECTIVITY_ERRORS):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def _as_critical(error: BaseException) -> CriticalWebhookError:
    if isinstance(error, CriticalWebhookError):
        return error
    return CriticalWebhookError(
        "Infrastructure failure while handling webhook",
        {"cause": type(error).__name__},
    )


class StripeWebhookDispatcher:
    """
    Registry of Stripe event handlers.

    Each event id is handled at most once: the idempotency record is written
    in the same transaction as the handler's changes. Unknown event types are
    acknowledged as ignored.
    """

    def __init__(self, handlers: Mapping[str, StripeEventHandler] | None = None) -> None:
        self._handlers: dict[str, StripeEventHandler] = dict(handlers or {})

    def register(self, event_type: str, handler: StripeEventHandler) -> None:
        self._handlers[event_type] = handler

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, event: StripeEvent, db: AsyncSession) -> HandlerResult:
        """
        Run the handler registered for ``event.type``.

        Returns:
            HandlerResult: outcome to acknowledge to Stripe.

        Raises:
            CriticalWebhookError: the database is unreachable or the handler
                asked for a retry. Nothing is recorded, so the redelivery is
                processed normally.
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {event.type}")
            return HandlerResult(
                status=WebhookOutcome.IGNORED, detail=f"No handler for {event.type}"
            )

        db_service = DatabaseService(db)

        try:
            already_processed = await db_service.is_event_processed(event.id)
        except Exception as e:
            if is_critical_error(e):
                logger.error(f"Idempotency lookup failed for {event.id}: {e}")
                raise _as_critical(e) from e
            raise

        if already_processed:
            logger.info(f"Duplicate Stripe event {event.id} ({event.type})")
            return HandlerResult(
                status=WebhookOutcome.DUPLICATE, detail="Event already processed"
            )

        try:
            result = await handler(event, db)
            # Surface the handler's own write errors before the idempotency insert
            await db.flush()
        except Exception as e:
            await db.rollback()
            if is_critical_error(e):
                logger.error(
                    f"Critical failure handling {event.type} {event.id}: {e}",
                    exc_info=True,
                )
                raise _as_critical(e) from e

            logger.error(
                f"Recoverable failure handling {event.type} {event.id}: {e}",
                exc_info=not isinstance(e, RecoverableWebhookError),
            )
            result = HandlerResult(status=WebhookOutcome.FAILED, detail=str(e))

        return await self._record(db, db_service, event, result)

    async def _record(
        self,
        db: AsyncSession,
        db_service: DatabaseService,
        event: StripeEvent,
        result: HandlerResult,
    ) -> HandlerResult:
        try:
            await db_service.record_processed_event(
                event.id, event.type, result.status, result.detail
            )
            await db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event committed first
            await db.rollback()
            logger.info(f"Stripe event {event.id} processed concurrently")
            return HandlerResult(
                status=WebhookOutcome.DUPLICATE, detail="Event processed concurrently"
            )
        except Exception as e:
            await db.rollback()
            if is_critical_error(e):
                logger.error(f"Could not record Stripe event {event.id}: {e}")
                raise _as_critical(e) from e
            raise

        logger.info(f"Stripe event {event.type} {event.id}: {result.status.value}")
        return result


stripe_dispatcher = StripeWebhookDispatcher(DEFAULT_HANDLERS)


def get_stripe_dispatcher() -> StripeWebhookDispatcher:
    """Dependency returning the application's dispatcher."""
    return stripe_dispatcher
