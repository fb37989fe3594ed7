import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from quimita import models
from quimita.errors import ConflictError

logger = logging.getLogger(__name__)

STATUS_INACTIVE = "inactive"
STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUSES = {STATUS_INACTIVE, STATUS_PENDING, STATUS_ACTIVE}

GATEWAY_AUTHORIZED = "authorized"
GATEWAY_PENDING = "pending"
GATEWAY_PAUSED = "paused"
GATEWAY_CANCELLED = "cancelled"

_GATEWAY_STATUS_ALIASES = {"canceled": GATEWAY_CANCELLED}
_TERMINAL_INACTIVE_STATUSES = {GATEWAY_PAUSED, GATEWAY_CANCELLED}


@dataclass(frozen=True)
class SubscriptionRecord:
    active: bool = False
    status: str = STATUS_INACTIVE
    external_id: Optional[str] = None
    in_progress: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class CreateRequested:
    external_id: str


@dataclass(frozen=True)
class ReactivateRequested:
    external_id: str


@dataclass(frozen=True)
class ProviderUpdate:
    gateway_status: Optional[str]


@dataclass(frozen=True)
class CancelRequested:
    pass


SubscriptionEvent = Union[CreateRequested, ReactivateRequested, ProviderUpdate, CancelRequested]


def new_record() -> SubscriptionRecord:
    return SubscriptionRecord()


def normalize_gateway_status(value: Optional[str]) -> str:
    status = str(value or "").strip().lower()
    return _GATEWAY_STATUS_ALIASES.get(status, status)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_abandoned_submission(record: SubscriptionRecord, now: datetime, lease_ttl: timedelta) -> bool:
    """
    True when ``record`` is a submission lease nobody is coming back for.

    A lease is ``pending/in_progress`` with no agreement id, stamped with the
    claim time in ``updated_at``. Once it is older than ``lease_ttl`` the
    worker that took it is presumed dead.
    """
    if record.status != STATUS_PENDING or not record.in_progress or record.external_id:
        return False
    if record.updated_at is None:
        return True
    return as_naive_utc(record.updated_at) <= now - lease_ttl


def idle_snapshot(record: SubscriptionRecord) -> SubscriptionRecord:
    """The inactive record an abandoned lease stands for."""
    return replace(record, active=False, status=STATUS_INACTIVE, in_progress=False)


def is_consistent(record: SubscriptionRecord) -> bool:
    if record.status not in SUBSCRIPTION_STATUSES:
        return False
    if record.active and record.status != STATUS_ACTIVE:
        return False
    if record.status == STATUS_INACTIVE and (record.active or record.in_progress):
        return False
    return True


def _start_agreement(record: SubscriptionRecord, external_id: str, action: str) -> dict:
    if record.status != STATUS_INACTIVE or record.in_progress:
        raise ConflictError(f"Cannot {action} a subscription that is {record.status}.")
    if not external_id:
        raise ValueError("external_id is required to start an agreement")
    # A new agreement supersedes the previous one; nothing carries over.
    return {
        "active": False,
        "status": STATUS_PENDING,
        "external_id": external_id,
        "in_progress": True,
        "created_at": None,
    }


def _provider_update(record: SubscriptionRecord, gateway_status: Optional[str], now: datetime) -> dict:
    status = normalize_gateway_status(gateway_status)

    if status == GATEWAY_AUTHORIZED:
        return {
            "active": True,
            "status": STATUS_ACTIVE,
            "in_progress": False,
            "created_at": record.created_at or now,
        }

    if status in _TERMINAL_INACTIVE_STATUSES:
        return {"active": False, "status": STATUS_INACTIVE, "in_progress": False}

    if status != GATEWAY_PENDING:
        logger.warning("Ignoring unknown gateway status %r for agreement %s", gateway_status, record.external_id)
    return {}


def _cancel(record: SubscriptionRecord) -> dict:
    if record.status == STATUS_INACTIVE:
        return {}
    return {"active": False, "status": STATUS_INACTIVE, "in_progress": False}


def transition(
    record: SubscriptionRecord,
    event: SubscriptionEvent,
    now: Optional[datetime] = None,
) -> SubscriptionRecord:
    """
    Compute the record that results from applying ``event`` to ``record``.

    Pure: no I/O and no mutation of the input. Applying the same event twice
    yields the same record as applying it once, ``updated_at`` included, since
    a transition that changes nothing returns the input as-is.

    Raises ConflictError when a new agreement is requested for a record that
    is not inactive.
    """
    now = now or datetime.utcnow()

    if isinstance(event, CreateRequested):
        changes = _start_agreement(record, event.external_id, "create")
    elif isinstance(event, ReactivateRequested):
        changes = _start_agreement(record, event.external_id, "reactivate")
    elif isinstance(event, ProviderUpdate):
        changes = _provider_update(record, event.gateway_status, now)
    elif isinstance(event, CancelRequested):
        changes = _cancel(record)
    else:
        raise TypeError(f"Unsupported subscription event: {event!r}")

    changes = {key: value for key, value in changes.items() if getattr(record, key) != value}
    if not changes:
        return record
    return replace(record, updated_at=now, **changes)


def record_from_user(user: models.User) -> SubscriptionRecord:
    return SubscriptionRecord(
        active=bool(user.subscription_active),
        status=user.subscription_status or STATUS_INACTIVE,
        external_id=user.subscription_external_id,
        in_progress=bool(user.subscription_in_progress),
        created_at=user.subscription_created_at,
        updated_at=user.subscription_updated_at,
    )


def record_columns(record: SubscriptionRecord) -> dict:
    return {
        "subscription_active": record.active,
        "subscription_status": record.status,
        "subscription_external_id": record.external_id,
        "subscription_in_progress": record.in_progress,
        "subscription_created_at": record.created_at,
        "subscription_updated_at": record.updated_at,
    }


def apply_record(user: models.User, record: SubscriptionRecord) -> None:
    for column, value in record_columns(record).items():
        setattr(user, column, value)
