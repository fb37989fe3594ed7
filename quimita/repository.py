"""
Persistence for the subscription record embedded in ``users``.

Every write that can race with another request is a conditional UPDATE; the
database is the only arbiter between concurrent writers for the same user.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quimita import models
from quimita.errors import TransientStoreError
from quimita.subscriptions import (
    STATUS_INACTIVE,
    STATUS_PENDING,
    SubscriptionRecord,
    record_columns,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Reads and conditional writes of subscription records.

    Args:
        db: Session bound to the current request
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[models.User]:
        try:
            return self.db.query(models.User).filter(models.User.id == user_id).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TransientStoreError(f"Failed to load user {user_id}.") from exc

    def get_user_by_external_id(self, external_id: str) -> Optional[models.User]:
        try:
            return (
                self.db.query(models.User)
                .filter(models.User.subscription_external_id == external_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TransientStoreError(f"Failed to look up agreement {external_id}.") from exc

    def claim_submission(self, user: models.User, claimed_at: datetime, stale_before: datetime) -> bool:
        """
        Take the submission lease for a new agreement.

        Only one caller can move an idle inactive record to
        ``pending/in_progress`` with no external id; everyone else gets False.
        A lease whose claim stamp is at or before ``stale_before`` was
        abandoned and can be taken over the same way.
        """
        abandoned_lease = and_(
            models.User.subscription_status == STATUS_PENDING,
            models.User.subscription_in_progress.is_(True),
            models.User.subscription_external_id.is_(None),
            or_(
                models.User.subscription_updated_at.is_(None),
                models.User.subscription_updated_at <= stale_before,
            ),
        )
        idle = and_(
            models.User.subscription_status == STATUS_INACTIVE,
            models.User.subscription_in_progress.is_(False),
        )
        stmt = (
            update(models.User)
            .where(models.User.id == user.id, or_(idle, abandoned_lease))
            .values(
                subscription_active=False,
                subscription_status=STATUS_PENDING,
                subscription_in_progress=True,
                subscription_external_id=None,
                subscription_updated_at=claimed_at,
            )
        )
        return self._execute(stmt, f"claim submission for user {user.id}")

    def release_submission(
        self,
        user: models.User,
        previous: SubscriptionRecord,
        claimed_at: datetime,
    ) -> bool:
        """Drop our lease and put back exactly what was there before the claim."""
        stmt = (
            update(models.User)
            .where(*self._lease_held(user, claimed_at))
            .values(**record_columns(previous))
        )
        return self._execute(stmt, f"release submission for user {user.id}")

    def save(
        self,
        user: models.User,
        record: SubscriptionRecord,
        expected_external_id: Optional[str],
        lease_claimed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Persist ``record`` if the row still refers to ``expected_external_id``,
        or, with ``lease_claimed_at``, if we still hold that lease.

        Returns False when another writer replaced the agreement or took the
        lease over in the meantime; the caller's transition is then stale.
        """
        if lease_claimed_at is not None:
            conditions = self._lease_held(user, lease_claimed_at)
        else:
            conditions = [models.User.id == user.id, self._external_id_is(expected_external_id)]

        stmt = update(models.User).where(*conditions).values(**record_columns(record))
        return self._execute(stmt, f"save subscription for user {user.id}")

    @staticmethod
    def _external_id_is(external_id: Optional[str]):
        if external_id is None:
            return models.User.subscription_external_id.is_(None)
        return models.User.subscription_external_id == external_id

    def _lease_held(self, user: models.User, claimed_at: datetime) -> list:
        return [
            models.User.id == user.id,
            models.User.subscription_status == STATUS_PENDING,
            models.User.subscription_in_progress.is_(True),
            models.User.subscription_external_id.is_(None),
            models.User.subscription_updated_at == claimed_at,
        ]

    def _execute(self, stmt, description: str) -> bool:
        try:
            result = self.db.execute(stmt.execution_options(synchronize_session=False))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Database error during %s", description)
            raise TransientStoreError(f"Failed to {description}.") from exc
        return result.rowcount == 1
