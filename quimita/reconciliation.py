"""
Subscription reconciliation between local user records and Mercado Pago.

Three entry points feed the same state machine:

- checkout (``create`` / ``reactivate``) when the user starts an agreement,
- provider notifications (``handle_notification``) delivered by the webhook,
- lazy reconciliation (``reconcile``) when a pending user reads the profile.

Gateway calls are always made with no open transaction. A failed gateway call
or a failed write after it never leaves a partial write behind: either the
transition is persisted in full or the row is put back to what it was before.
A submission lease that could not be put back expires after
``SUBSCRIPTION_LEASE_SECONDS`` and is taken over by the next checkout.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Type, Union

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quimita import models
from quimita.billing_gateway import MercadoPagoGateway, get_billing_gateway
from quimita.database import get_db
from quimita.errors import ConflictError, NotFoundError, TransientStoreError, ValidationError
from quimita.repository import SubscriptionRepository
from quimita.subscriptions import (
    GATEWAY_CANCELLED,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    STATUS_PENDING,
    CancelRequested,
    CreateRequested,
    ProviderUpdate,
    ReactivateRequested,
    SubscriptionRecord,
    idle_snapshot,
    is_abandoned_submission,
    record_from_user,
    transition,
)

logger = logging.getLogger(__name__)

PREAPPROVAL_TOPICS = {"preapproval", "subscription_preapproval"}

OUTCOME_IGNORED = "ignored"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_UPDATED = "updated"


def _submission_lease_ttl() -> timedelta:
    # Must outlast the gateway timeout, or a slow create loses its lease.
    raw = os.getenv("SUBSCRIPTION_LEASE_SECONDS", "120").strip()
    try:
        seconds = int(raw)
        if seconds <= 0:
            raise ValueError
        return timedelta(seconds=seconds)
    except ValueError:
        return timedelta(seconds=120)


@dataclass(frozen=True)
class WebhookOutcome:
    status: str
    reason: Optional[str] = None


class SubscriptionCoordinator:
    """
    Orchestrates gateway calls and state transitions for one request.

    Args:
        db: Request-scoped database session
        gateway: Process-wide billing gateway
    """

    def __init__(self, db: Session, gateway: MercadoPagoGateway):
        self.repo = SubscriptionRepository(db)
        self.gateway = gateway

    def create(self, user: models.User) -> str:
        """Start a new agreement and return the provider checkout URL."""
        return self._start_agreement(user, CreateRequested)

    def reactivate(self, user: models.User) -> str:
        """Start a replacement agreement after a cancellation."""
        return self._start_agreement(user, ReactivateRequested)

    def cancel(self, user: models.User) -> SubscriptionRecord:
        record = record_from_user(user)
        if not record.external_id:
            raise NotFoundError("No subscription on file to cancel.")
        if record.status == STATUS_INACTIVE:
            return record

        # Cancel remotely first; a failure here must leave the row untouched.
        self.gateway.update(record.external_id, GATEWAY_CANCELLED)

        updated = transition(record, CancelRequested())
        self._persist(user, record, updated, reason="cancel requested")
        return updated

    def handle_notification(self, agreement_id: Optional[str], topic: Optional[str] = None) -> WebhookOutcome:
        """
        Apply a provider notification for ``agreement_id``.

        The notification body is never trusted for the status: the agreement
        is fetched from the gateway before transitioning. Unknown ids are
        acknowledged, since redeliveries of foreign or already handled events
        are expected.
        """
        normalized_topic = str(topic or "").strip().lower()
        if normalized_topic and normalized_topic not in PREAPPROVAL_TOPICS:
            logger.info("Ignoring Mercado Pago notification topic=%s id=%s", normalized_topic, agreement_id)
            return WebhookOutcome(OUTCOME_IGNORED, "unsupported_topic")

        agreement_id = str(agreement_id or "").strip()
        if not agreement_id:
            return WebhookOutcome(OUTCOME_IGNORED, "missing_id")

        user = self.repo.get_user_by_external_id(agreement_id)
        if user is None:
            logger.info("Ignoring Mercado Pago notification for unknown agreement %s", agreement_id)
            return WebhookOutcome(OUTCOME_IGNORED, "agreement_not_found")

        changed = self._sync_from_gateway(user, reason="webhook")
        return WebhookOutcome(OUTCOME_UPDATED if changed else OUTCOME_UNCHANGED)

    def reconcile(self, user: models.User) -> SubscriptionRecord:
        """Refresh a pending record from the gateway before it is shown."""
        record = record_from_user(user)
        if record.status != STATUS_PENDING or not record.external_id:
            return record

        self._sync_from_gateway(user, reason="profile read")
        return record_from_user(user)

    def _start_agreement(
        self,
        user: models.User,
        event_type: Type[Union[CreateRequested, ReactivateRequested]],
    ) -> str:
        user_id = user.id
        now = datetime.utcnow()
        lease_ttl = _submission_lease_ttl()
        previous = record_from_user(user)
        if is_abandoned_submission(previous, now, lease_ttl):
            logger.warning("Taking over abandoned submission lease for user %s", user_id)
            previous = idle_snapshot(previous)

        self._ensure_can_start(previous)
        if self.gateway.requires_tax_id and not (user.cpf or "").strip():
            raise ValidationError("CPF is required to subscribe. Update your profile and try again.")

        payload = self.gateway.build_agreement_payload(user)
        if not self.repo.claim_submission(user, claimed_at=now, stale_before=now - lease_ttl):
            # Another request took the lease between our read and our write.
            raise ConflictError("A subscription request is already in progress.")

        try:
            agreement = self.gateway.create(payload)
        except Exception:
            self._release_submission(user, previous, now)
            raise

        updated = transition(previous, event_type(agreement.id))
        try:
            saved = self.repo.save(user, updated, expected_external_id=None, lease_claimed_at=now)
        except Exception:
            logger.error(
                "Failed to record agreement %s for user %s; "
                "it was created at Mercado Pago and must be cancelled there",
                agreement.id,
                user_id,
            )
            self._release_submission(user, previous, now)
            raise

        if not saved:
            # The lease was taken over underneath us; keep the agreement id in
            # the log so the orphan can be cancelled at the provider.
            logger.error(
                "Lost submission lease for user %s; agreement %s was created but not recorded",
                user_id,
                agreement.id,
            )
            raise ConflictError("A subscription request is already in progress.")

        logger.info(
            "Subscription agreement %s submitted for user %s (%s -> %s, %s)",
            agreement.id,
            user_id,
            previous.status,
            updated.status,
            event_type.__name__,
        )
        return agreement.init_point

    def _release_submission(self, user: models.User, previous: SubscriptionRecord, claimed_at: datetime) -> None:
        # Runs while another exception is propagating; that one must win.
        try:
            self.repo.release_submission(user, previous, claimed_at)
        except (TransientStoreError, SQLAlchemyError):
            logger.exception(
                "Could not release submission lease claimed at %s; it expires after %s",
                claimed_at,
                _submission_lease_ttl(),
            )

    @staticmethod
    def _ensure_can_start(record: SubscriptionRecord) -> None:
        if record.in_progress or record.status == STATUS_PENDING:
            raise ConflictError("A subscription request is already in progress.")
        if record.status == STATUS_ACTIVE:
            raise ConflictError("Subscription is already active.")

    def _sync_from_gateway(self, user: models.User, reason: str) -> bool:
        record = record_from_user(user)
        agreement = self.gateway.get(record.external_id)
        updated = transition(record, ProviderUpdate(agreement.status))
        return self._persist(user, record, updated, reason=f"{reason}, gateway status {agreement.status!r}")

    def _persist(
        self,
        user: models.User,
        record: SubscriptionRecord,
        updated: SubscriptionRecord,
        reason: str,
    ) -> bool:
        if updated == record:
            return False

        if not self.repo.save(user, updated, expected_external_id=record.external_id):
            logger.info(
                "Dropping stale transition for user %s: agreement %s was replaced (%s)",
                user.id,
                record.external_id,
                reason,
            )
            return False

        logger.info(
            "Subscription for user %s moved %s -> %s (%s)",
            user.id,
            record.status,
            updated.status,
            reason,
        )
        return True


def get_subscription_coordinator(
    db: Session = Depends(get_db),
    gateway: MercadoPagoGateway = Depends(get_billing_gateway),
) -> SubscriptionCoordinator:
    return SubscriptionCoordinator(db, gateway)
