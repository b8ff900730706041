"""
Cooperative Module

The aggregate root. A Cooperative owns the in-memory state, the store it is
flushed to, the clock and the notifier, and exposes one manager per record
kind. All mutation goes through it; nothing lives in module globals.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Optional
import logging
import threading

from .activity import ActivityLog, ActivityType
from .config import CooperativeConfig, CoopSettings, get_settings
from .contributions import ContributionManager
from .dates import Clock, SystemClock
from .expenses import ExpenseManager, RefundManager
from .ledger import CashLedger, available_cash
from .loans import LoanManager
from .logging_config import log_action
from .members import MemberManager
from .models import Transaction, TransactionType
from .money import Amount, ZERO, round_cents, format_amount
from .notifications import NotificationKind, Notifier, LoggingNotifier
from .state import CooperativeState
from .storage import COLLECTIONS, CollectionStore, InMemoryStore, StorageError

logger = logging.getLogger(__name__)


class Cooperative:
    """
    Single logical writer over a cooperative's data.

    Every mutating operation runs inside atomic(): the state is snapshotted,
    restored if the operation raises, and flushed to the store once it
    succeeds.
    """

    def __init__(
        self,
        store: Optional[CollectionStore] = None,
        clock: Optional[Clock] = None,
        notify: Optional[Notifier] = None,
        settings: Optional[CoopSettings] = None
    ):
        self.store = store or InMemoryStore()
        self.clock = clock or SystemClock()
        self.notify = notify or LoggingNotifier()
        self.settings = settings or get_settings()
        self.state = CooperativeState(config=CooperativeConfig.from_settings(self.settings))

        self._lock = threading.RLock()
        self._depth = 0

        self.ledger = CashLedger(self.state, self.clock)
        self.activity = ActivityLog(self.state, self.clock)
        self.members = MemberManager(self)
        self.loans = LoanManager(self)
        self.contributions = ContributionManager(self)
        self.expenses = ExpenseManager(self)
        self.refunds = RefundManager(self)

    @classmethod
    def open(cls, store: CollectionStore, **kwargs) -> 'Cooperative':
        """Create a cooperative and load whatever the store already holds"""
        coop = cls(store, **kwargs)
        coop.load()
        return coop

    # Persistence

    def load(self) -> None:
        data = {name: self.store.get(name) for name in COLLECTIONS}
        default_config = CooperativeConfig.from_settings(self.settings)
        with self._lock:
            self.state.restore(CooperativeState.from_collections(data, default_config))
        logger.info("Loaded cooperative: %d members, %d loans, %d ledger entries",
                    len(self.state.members), len(self.state.loans), len(self.state.transactions))

    def flush(self) -> bool:
        """
        Write every collection to the store.

        The in-memory change is kept when the store fails; the failure is
        logged and reported and a later flush writes it again.
        """
        try:
            for name, value in self.state.to_collections().items():
                self.store.set(name, value)
        except StorageError as e:
            logger.error("Flush failed, in-memory state not yet durable: %s", e)
            self.notify(NotificationKind.ERROR, "Could not save data", str(e))
            return False
        return True

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; nested calls join the outer one"""
        with self._lock:
            if self._depth:
                yield
                return

            snapshot = self.state.snapshot()
            self._depth += 1
            try:
                yield
            except Exception:
                self.state.restore(snapshot)
                raise
            finally:
                self._depth -= 1
            self.flush()

    # Cash

    @property
    def config(self) -> CooperativeConfig:
        return self.state.config

    def available_cash(self) -> Decimal:
        """Cash derived from the ledger for the current accounting period"""
        period_start = self.state.config.period_start
        transactions = self.ledger.since(period_start)
        contributions = [
            c for c in self.state.contributions.values()
            if period_start is None or (c.paid_at or c.created_at) > period_start
        ]
        return available_cash(transactions, contributions, self.state.config.opening_balance)

    @property
    def cashbox(self) -> Decimal:
        return self.state.cashbox

    def adjust_cashbox(self, amount: Amount, description: Optional[str] = None) -> Optional[Transaction]:
        """Record a manual cash correction; a zero amount does nothing"""
        amount = round_cents(amount)
        if amount == ZERO:
            return None

        description = description or ("Positive cash adjustment" if amount > ZERO
                                      else "Negative cash adjustment")
        with self.atomic():
            self.state.cashbox = round_cents(self.state.cashbox + amount)
            transaction = self.ledger.append(TransactionType.MANUAL_ADJUSTMENT, amount, description)
            self.activity.log(
                ActivityType.CASHBOX_ADJUST,
                f"Cash adjustment: {format_amount(amount, self.config.currency_symbol)}",
                details={"amount": amount, "description": description, "new_total": self.state.cashbox}
            )

        log_action(logger, "info", "Cash box adjusted", action="cashbox_adjusted",
                   entity_type="transaction", entity_id=transaction.id, extra={"amount": str(amount)})
        self.notify(NotificationKind.SUCCESS, "Cash adjusted",
                    f"{format_amount(amount, self.config.currency_symbol)} applied to the cash box")
        return transaction

    def set_cashbox(self, value: Amount) -> Decimal:
        """Overwrite the counted cash box without touching the ledger"""
        value = round_cents(value)
        with self.atomic():
            previous = self.state.cashbox
            self.state.cashbox = value
            self.activity.log(
                ActivityType.CASHBOX_ADJUST, "Cash box set",
                details={"old": previous, "new": value}
            )
        self.notify(NotificationKind.SUCCESS, "Cash box updated")
        return value

    def annual_closing(self) -> Decimal:
        """
        Close the accounting period.

        The current available cash becomes the opening balance and only
        entries recorded afterwards feed the new period.
        """
        with self.atomic():
            balance = self.available_cash()
            previous = self.state.config.opening_balance
            self.state.config = self.state.config.updated(
                opening_balance=balance, period_start=self.clock.now()
            )
            self.activity.log(
                ActivityType.ANNUAL_CLOSING,
                f"Annual closing: opening balance {format_amount(balance, self.config.currency_symbol)}",
                details={"previous_opening_balance": previous, "opening_balance": balance}
            )

        log_action(logger, "info", "Annual closing", action="annual_closing",
                   extra={"opening_balance": str(balance)})
        self.notify(NotificationKind.SUCCESS, "Annual closing completed",
                    f"Opening balance {format_amount(balance, self.config.currency_symbol)}")
        return balance

    # Configuration and maintenance

    def update_config(self, **changes: Any) -> CooperativeConfig:
        """Change business settings; loans already approved keep their terms"""
        updated = self.state.config.updated(**changes)
        with self.atomic():
            previous = self.state.config
            self.state.config = updated
            self.activity.log(
                ActivityType.CONFIG_UPDATE, "Configuration updated",
                details={"old": previous.to_dict(), "new": updated.to_dict()}
            )
        self.notify(NotificationKind.SUCCESS, "Configuration updated")
        return updated

    def replace_state(self, new_state: CooperativeState) -> None:
        """Swap in a complete state, e.g. from a backup"""
        with self.atomic():
            self.state.restore(new_state)

    def clear_all(self) -> None:
        """Erase every collection and start over with default settings"""
        with self._lock:
            self.store.clear()
            with self.atomic():
                self.state.restore(CooperativeState(config=CooperativeConfig.from_settings(self.settings)))
                self.activity.log(ActivityType.DATA_CLEAR, "All data cleared")

        logger.warning("All cooperative data cleared")
        self.notify(NotificationKind.WARNING, "Data cleared", "All data has been permanently removed")

