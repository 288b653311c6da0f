"""
Sender account rotation and health tracking.
"""
import datetime
import threading
from typing import List, Optional, Callable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadmailer.config import RotationSettings
from leadmailer.database import crud
from leadmailer.database.models import SenderAccount
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

# Serializes select-then-increment across threads of this process
ROTATION_LOCK = threading.Lock()


class SenderRotation:
    """Pick the least-used account with capacity and keep its counters honest."""

    def __init__(self, db_session: Session, settings: RotationSettings = None,
                 clock: Callable[[], datetime.datetime] = None):
        self.db_session = db_session
        self.settings = settings or RotationSettings()
        self.clock = clock or datetime.datetime.utcnow

    def available_accounts(self) -> List[SenderAccount]:
        """Active accounts with room left today, least used first."""
        accounts = [
            account for account in crud.get_active_sender_accounts(self.db_session)
            if (account.sent_today or 0) < (account.daily_limit or 0)
        ]
        # Stable sort keeps id order on ties
        return sorted(accounts, key=lambda account: account.sent_today or 0)

    def select_account(self) -> Optional[SenderAccount]:
        """
        Choose the account to send with, without reserving it.

        Returns:
            SenderAccount or None if no account has capacity
        """
        accounts = self.available_accounts()
        return accounts[0] if accounts else None

    def reserve(self, preferred_id: int = None) -> Optional[SenderAccount]:
        """
        Select an account and count one send against it, atomically.

        Args:
            preferred_id: Account to use if it is active and has capacity

        Returns:
            Reserved SenderAccount, or None if no account has capacity
        """
        with ROTATION_LOCK:
            candidates = self.available_accounts()
            if preferred_id is not None:
                preferred = [a for a in candidates if a.id == preferred_id]
                if preferred:
                    # Still fall back to the others if the preferred one fills up meanwhile
                    candidates = preferred + [a for a in candidates if a.id != preferred_id]
                else:
                    logger.info(f"Preferred sender {preferred_id} unavailable, rotating")

            for account in candidates:
                if self._increment_if_capacity(account):
                    logger.info(f"Selected sender {account.name} ({account.sent_today}/{account.daily_limit} today)")
                    return account

        logger.warning("No sender account with remaining capacity")
        return None

    def _increment_if_capacity(self, account: SenderAccount) -> bool:
        """Conditional increment so the daily limit holds even against other writers."""
        try:
            updated = self.db_session.query(SenderAccount).filter(
                SenderAccount.id == account.id,
                SenderAccount.is_active.is_(True),
                SenderAccount.sent_today < SenderAccount.daily_limit
            ).update({SenderAccount.sent_today: SenderAccount.sent_today + 1}, synchronize_session=False)
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error reserving sender {account.name}: {e}")
            raise
        self.db_session.refresh(account)
        return updated == 1

    def record_outcome(self, account: SenderAccount, success: bool) -> None:
        """
        Update health counters after a dispatch attempt.

        Args:
            account: Account that was used
            success: Whether the message was delivered to the transport
        """
        with ROTATION_LOCK:
            field = SenderAccount.success_count if success else SenderAccount.failure_count
            try:
                self.db_session.query(SenderAccount).filter(SenderAccount.id == account.id).update(
                    {field: field + 1, SenderAccount.last_used_at: self.clock()},
                    synchronize_session=False
                )
                self.db_session.commit()
            except SQLAlchemyError as e:
                self.db_session.rollback()
                logger.error(f"Error recording outcome for sender {account.name}: {e}")
                raise
            self.db_session.refresh(account)

    def is_healthy(self, account: SenderAccount) -> bool:
        """
        An account is healthy with no history or a success rate at or above the threshold.

        Args:
            account: Account to check

        Returns:
            True if healthy
        """
        successes = account.success_count or 0
        total = successes + (account.failure_count or 0)
        if total == 0:
            return True
        # Compared without division so exactly 70% stays healthy
        return successes * 100 >= self.settings.health_threshold * total

    def sweep_unhealthy(self) -> List[SenderAccount]:
        """
        Deactivate every active account whose success rate fell below the threshold.

        Returns:
            Accounts that were deactivated
        """
        disabled = []
        for account in crud.get_active_sender_accounts(self.db_session):
            if not self.is_healthy(account):
                account.is_active = False
                disabled.append(account)
                logger.warning(
                    f"Sender account {account.name} auto-disabled due to low success rate "
                    f"(success={account.success_count}, failure={account.failure_count}, "
                    f"rate={account.success_rate:.1f}%)"
                )

        if disabled:
            try:
                self.db_session.commit()
            except SQLAlchemyError as e:
                self.db_session.rollback()
                logger.error(f"Error disabling unhealthy sender accounts: {e}")
                raise
        return disabled

    def remaining_capacity(self, account: SenderAccount) -> int:
        return account.remaining_capacity

    def total_remaining_capacity(self) -> int:
        return sum(account.remaining_capacity for account in self.available_accounts())

    def reset_daily_counters(self, today: datetime.date = None) -> int:
        """
        Zero sent_today on accounts not yet reset today.

        Args:
            today: Date to reset for, defaults to the clock's date

        Returns:
            Number of accounts reset
        """
        today = today or self.clock().date()
        reset = 0
        with ROTATION_LOCK:
            for account in self.db_session.query(SenderAccount).all():
                if account.last_reset_date != today:
                    account.sent_today = 0
                    account.last_reset_date = today
                    reset += 1
            try:
                self.db_session.commit()
            except SQLAlchemyError as e:
                self.db_session.rollback()
                logger.error(f"Error resetting daily sender counters: {e}")
                raise
        logger.info(f"Reset daily counters on {reset} sender accounts")
        return reset
