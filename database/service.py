"""Database service layer."""

import logging
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.constants import MessageMethod, PlanType, WebhookOutcome
from core.exceptions import DatabaseError
from database.models import (
    Kine,
    MessageSendHistory,
    Patient,
    ProcessedWebhookEvent,
    Programme,
    Subscription,
)
from utils.log_sanitizer import sanitize_id, sanitize_uid
from utils.timestamps import utc_now

logger = logging.getLogger(__name__)


class DatabaseService:
    """Service layer for database operations shared by routes and webhooks."""

    def __init__(self, db_session: AsyncSession):
        """Initialize with database session."""
        self.db = db_session

    # ==================== KINE MANAGEMENT ====================

    async def get_kine(self, kine_id: int) -> Kine | None:
        return await self.db.get(Kine, kine_id)

    async def get_kine_by_uid(self, uid: str) -> Kine | None:
        result = await self.db.execute(select(Kine).where(Kine.uid == uid))
        return result.scalar_one_or_none()

    async def get_kine_by_customer(self, stripe_customer_id: str) -> Kine | None:
        result = await self.db.execute(
            select(Kine).where(Kine.stripe_customer_id == stripe_customer_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_kine(
        self, uid: str, email: str | None = None, name: str | None = None
    ) -> Kine:
        """
        Get or create a kiné by Firebase UID.

        Called on authenticated requests, so it is safe to call repeatedly.

        Args:
            uid: Firebase user identifier
            email: Optional email from the ID token
            name: Optional display name from the ID token

        Returns:
            Kine: The kiné record
        """
        try:
            kine = await self.get_kine_by_uid(uid)

            if kine:
                if email and kine.email != email:
                    kine.email = email
                    await self.db.commit()
                return kine

            first_name, _, last_name = (name or "").partition(" ")
            kine = Kine(
                uid=uid,
                email=email,
                first_name=first_name or None,
                last_name=last_name or None,
            )
            self.db.add(kine)
            await self.db.commit()
            await self.db.refresh(kine)
            logger.info(f"Created new kiné {sanitize_uid(uid)}")
            return kine

        except Exception as e:
            logger.error(f"Error getting/creating kiné: {e}")
            await self.db.rollback()
            raise

    async def find_kine_for_stripe_subscription(
        self,
        stripe_subscription_id: str | None,
        kine_id_hint: str | int | None = None,
        stripe_customer_id: str | None = None,
    ) -> Kine | None:
        """
        Resolve the kiné a Stripe subscription belongs to.

        Looks up, in order: the subscription row already linked to the
        Stripe subscription, the ``kineId`` metadata set at checkout, then
        the Stripe customer stored on the kiné.
        """
        if stripe_subscription_id:
            subscription = await self.get_subscription_by_stripe_id(stripe_subscription_id)
            if subscription:
                return await self.get_kine(subscription.kine_id)

        if kine_id_hint is not None:
            try:
                kine = await self.get_kine(int(kine_id_hint))
            except (TypeError, ValueError):
                kine = None
            if kine:
                return kine

        if stripe_customer_id:
            return await self.get_kine_by_customer(stripe_customer_id)

        return None

    # ==================== SUBSCRIPTIONS ====================

    async def get_subscription_for_kine(self, kine_id: int) -> Subscription | None:
        result = await self.db.execute(
            select(Subscription).where(Subscription.kine_id == kine_id)
        )
        return result.scalar_one_or_none()

    async def get_subscription_by_stripe_id(
        self, stripe_subscription_id: str
    ) -> Subscription | None:
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def count_plan_subscriptions(self, plan_type: PlanType) -> int:
        """Kinés who hold or held a plan, whatever the current status."""
        result = await self.db.execute(
            select(func.count(Subscription.id)).where(
                Subscription.plan_type == plan_type.value
            )
        )
        return int(result.scalar_one())

    def _insert_for_dialect(self) -> Any:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise DatabaseError(f"Upsert not supported on dialect {dialect}")

    async def upsert_subscription(
        self, kine_id: int, values: dict[str, Any], event_created: int | None = None
    ) -> tuple[Subscription, bool]:
        """
        Insert or update the subscription of a kiné in one statement.

        The conflict target is the unique ``kine_id``. When ``event_created``
        is given, an existing row is only overwritten if it was last written
        by an event that is not newer.

        Returns:
            (subscription, applied): ``applied`` is False when the write was
            skipped as stale.
        """
        insert = self._insert_for_dialect()
        row = {"kine_id": kine_id, **values}
        if event_created is not None:
            row["last_event_created"] = event_created

        stmt = insert(Subscription).values(**row)
        set_ = {key: stmt.excluded[key] for key in row if key != "kine_id"}
        set_["updated_at"] = func.now()

        where = None
        if event_created is not None:
            where = or_(
                Subscription.last_event_created.is_(None),
                Subscription.last_event_created <= event_created,
            )

        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.kine_id], set_=set_, where=where
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.kine_id == kine_id)
            .execution_options(populate_existing=True)
        )
        subscription = result.scalar_one()
        applied = event_created is None or subscription.last_event_created == event_created

        if not applied:
            logger.info(
                f"Skipped stale subscription write for kiné {sanitize_id(kine_id)}"
            )
        return subscription, applied

    async def attach_subscription(
        self, kine_id: int, values: dict[str, Any]
    ) -> tuple[Subscription, bool]:
        """
        Record a completed checkout without taking part in event ordering.

        Checkout sessions complete after Stripe has created the subscription,
        so ``last_event_created`` is left untouched and a row already written
        by a subscription event is not overwritten.
        """
        insert = self._insert_for_dialect()
        stmt = insert(Subscription).values(kine_id=kine_id, **values)
        set_ = {key: stmt.excluded[key] for key in values}
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.kine_id],
            set_=set_,
            where=Subscription.last_event_created.is_(None),
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.kine_id == kine_id)
            .execution_options(populate_existing=True)
        )
        subscription = result.scalar_one()
        return subscription, subscription.last_event_created is None

    async def update_subscription_if_newer(
        self, subscription: Subscription, values: dict[str, Any], event_created: int
    ) -> bool:
        """Conditionally update an existing row; False when the event is stale."""
        result = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                or_(
                    Subscription.last_event_created.is_(None),
                    Subscription.last_event_created <= event_created,
                ),
            )
            .values(**values, last_event_created=event_created, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(subscription)
        return bool(result.rowcount)

    # ==================== WEBHOOK EVENTS ====================

    async def is_event_processed(self, event_id: str) -> bool:
        result = await self.db.execute(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.event_id == event_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def record_processed_event(
        self,
        event_id: str,
        event_type: str,
        outcome: WebhookOutcome,
        detail: str | None = None,
        provider: str = "stripe",
    ) -> ProcessedWebhookEvent:
        """Stage the idempotency record; committed with the handler's writes."""
        record = ProcessedWebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            outcome=outcome.value,
            detail=detail[:1000] if detail else None,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    # ==================== PROGRAMMES ====================

    async def get_programme_for_kine(
        self, programme_id: int, kine_id: int
    ) -> Programme | None:
        """
        Get a programme with its patient.

        Security: only returns the programme if its patient belongs to the kiné.
        """
        result = await self.db.execute(
            select(Programme)
            .join(Patient, Programme.patient_id == Patient.id)
            .where(Programme.id == programme_id, Patient.kine_id == kine_id)
            .options(selectinload(Programme.patient))
        )
        return result.scalar_one_or_none()

    async def record_message_sent(
        self,
        kine_id: int,
        recipient: str,
        method: MessageMethod = MessageMethod.WHATSAPP,
        patient_id: int | None = None,
        programme_id: int | None = None,
        template_name: str | None = None,
        provider_message_id: str | None = None,
    ) -> MessageSendHistory:
        """Stage a history row for a message the provider accepted."""
        entry = MessageSendHistory(
            kine_id=kine_id,
            patient_id=patient_id,
            programme_id=programme_id,
            method=method.value,
            recipient=recipient,
            template_name=template_name,
            provider_message_id=provider_message_id,
            sent_at=utc_now(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry
