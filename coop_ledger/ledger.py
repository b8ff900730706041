"""
Cash Ledger Module

Append-only log of signed cash movements. Available cash is never stored:
it is recomputed from the log, the contribution collection and the opening
balance every time it is asked for.

A compensating entry always carries the reference id of the entry it
offsets. Loan approvals reference the loan; retentions, loan payments,
contributions and refunds reference the member; expenses reference the
expense; cash-box adjustments carry no reference.

Installment and prepayment entries carry the member id, not the loan id, so
per-reference totals cannot tell apart two loans held by the same member.
Use the activity log, whose loan entries reference the loan, for that.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .dates import Clock
from .models import Transaction, TransactionType, Contribution
from .money import Amount, ZERO, round_cents

logger = logging.getLogger(__name__)


# Entry types that move the cash box. Contribution and penalty entries are
# informational: contributions are counted from the contribution records.
CASH_TRANSACTION_TYPES = frozenset({
    TransactionType.LOAN_PAYMENT,
    TransactionType.RETENTION,
    TransactionType.LOAN_APPROVAL,
    TransactionType.LOAN_CANCEL,
    TransactionType.EXPENSE,
    TransactionType.REFUND,
    TransactionType.MANUAL_ADJUSTMENT,
})


def available_cash(
    transactions: Iterable[Transaction],
    contributions: Iterable[Contribution],
    opening_balance: Amount = ZERO
) -> Decimal:
    """
    Derive available cash.

    Paid contributions (share + expense + penalty), plus the signed amount of
    every cash-moving entry, plus the opening balance. Pure: nothing is
    cached or mutated.
    """
    contributed = sum(
        (c.cash_amount for c in contributions if c.is_paid), ZERO
    )
    moved = sum(
        (t.amount for t in transactions if t.type in CASH_TRANSACTION_TYPES), ZERO
    )
    return round_cents(contributed + moved + round_cents(opening_balance))


@dataclass
class LedgerSummary:
    """Totals of a set of entries"""
    by_type: Dict[str, Decimal] = field(default_factory=dict)
    by_reference: Dict[str, Decimal] = field(default_factory=dict)
    count: int = 0

    def total(self, transaction_type: TransactionType) -> Decimal:
        return self.by_type.get(transaction_type.value, ZERO)

    def net_for(self, reference_id: str) -> Decimal:
        return self.by_reference.get(reference_id, ZERO)


def summarize(transactions: Iterable[Transaction]) -> LedgerSummary:
    """Group entry amounts per type and per reference id"""
    summary = LedgerSummary()
    for t in transactions:
        summary.count += 1
        summary.by_type[t.type.value] = summary.by_type.get(t.type.value, ZERO) + t.amount
        if t.reference_id:
            summary.by_reference[t.reference_id] = (
                summary.by_reference.get(t.reference_id, ZERO) + t.amount
            )
    return summary


class CashLedger:
    """
    Writes to the cooperative's transaction log.

    Appends never validate business rules; callers check state first.
    """

    def __init__(self, state, clock: Clock):
        self.state = state
        self.clock = clock

    @property
    def entries(self) -> List[Transaction]:
        return list(self.state.transactions)

    def append(
        self,
        transaction_type: TransactionType,
        amount: Amount,
        description: str,
        reference_id: Optional[str] = None
    ) -> Transaction:
        """Append one signed entry dated by the clock"""
        now = self.clock.now()
        transaction = Transaction(
            id=str(uuid.uuid4()),
            type=transaction_type,
            amount=round_cents(amount),
            description=description,
            date=now.date(),
            created_at=now,
            reference_id=reference_id
        )
        self.state.transactions.append(transaction)
        logger.debug("Ledger entry %s %s %s", transaction.type.value, transaction.amount,
                     reference_id or "-")
        return transaction

    def find(
        self,
        transaction_type: Optional[TransactionType] = None,
        reference_id: Optional[str] = None
    ) -> List[Transaction]:
        return [
            t for t in self.state.transactions
            if (transaction_type is None or t.type == transaction_type)
            and (reference_id is None or t.reference_id == reference_id)
        ]

    def has_entry(self, transaction_type: TransactionType, reference_id: str) -> bool:
        return any(
            t.type == transaction_type and t.reference_id == reference_id
            for t in self.state.transactions
        )

    def purge_reference(self, reference_id: str, since: Optional[datetime] = None) -> int:
        """
        Remove every entry carrying `reference_id`, or only those created
        after `since` when it is given.

        Structural removal, only used when a loan is deleted. Returns the
        number of entries removed.
        """
        kept = [
            t for t in self.state.transactions
            if t.reference_id != reference_id or (since is not None and t.created_at <= since)
        ]
        removed = len(self.state.transactions) - len(kept)
        self.state.transactions = kept
        return removed

    def since(self, moment: Optional[datetime]) -> List[Transaction]:
        """Entries created after `moment`, or all of them when it is None"""
        if moment is None:
            return list(self.state.transactions)
        return [t for t in self.state.transactions if t.created_at > moment]
