"""
Test suite for the cash ledger

Available cash is derived, never stored: paid contributions plus every
cash-moving entry plus the opening balance.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone, timedelta

from coop_ledger.dates import FixedClock
from coop_ledger.ledger import CashLedger, available_cash, summarize, CASH_TRANSACTION_TYPES
from coop_ledger.models import Contribution, ContributionStatus, Transaction, TransactionType
from coop_ledger.state import CooperativeState


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_transaction(transaction_type, amount, reference_id=None, created_at=NOW):
    return Transaction(
        id=f"tx-{transaction_type.value}-{amount}",
        type=transaction_type,
        amount=Decimal(amount),
        description="test",
        date=created_at.date(),
        created_at=created_at,
        reference_id=reference_id
    )


def make_contribution(total_parts=("25.00", "5.00", "0.00"), status=ContributionStatus.PAID):
    share, expense, penalty = (Decimal(p) for p in total_parts)
    return Contribution(
        id="c1",
        member_id="m1",
        month="2024-01",
        share_amount=share,
        expense_amount=expense,
        penalty_amount=penalty,
        total_amount=share + expense + penalty,
        due_date=date(2024, 1, 5),
        created_at=NOW,
        status=status
    )


class TestAvailableCash:
    """Test the pure cash derivation"""

    def test_empty_ledger_is_opening_balance(self):
        assert available_cash([], [], Decimal('150')) == Decimal('150.00')

    def test_paid_contributions_count_with_penalty(self):
        paid = make_contribution(("25.00", "5.00", "5.00"))
        pending = make_contribution(status=ContributionStatus.PENDING)
        assert available_cash([], [paid, pending]) == Decimal('35.00')

    def test_contribution_entries_are_informational(self):
        """Test contribution and penalty entries never move cash"""
        transactions = [
            make_transaction(TransactionType.CONTRIBUTION, "30.00"),
            make_transaction(TransactionType.PENALTY, "5.00"),
        ]
        assert available_cash(transactions, []) == Decimal('0.00')

    def test_signed_cash_entries(self):
        transactions = [
            make_transaction(TransactionType.LOAN_APPROVAL, "-1000.00"),
            make_transaction(TransactionType.RETENTION, "10.00"),
            make_transaction(TransactionType.LOAN_PAYMENT, "94.62"),
            make_transaction(TransactionType.EXPENSE, "-12.50"),
            make_transaction(TransactionType.REFUND, "-20.00"),
            make_transaction(TransactionType.MANUAL_ADJUSTMENT, "100.00"),
        ]
        contributions = [make_contribution()]
        assert available_cash(transactions, contributions, Decimal('1000')) == Decimal('202.12')

    def test_pure(self):
        """Test the same inputs always give the same result and nothing changes"""
        transactions = [make_transaction(TransactionType.MANUAL_ADJUSTMENT, "42.00")]
        contributions = [make_contribution()]
        first = available_cash(transactions, contributions)
        second = available_cash(transactions, contributions)
        assert first == second == Decimal('72.00')
        assert len(transactions) == 1
        assert contributions[0].status == ContributionStatus.PAID

    def test_cash_types(self):
        assert TransactionType.CONTRIBUTION not in CASH_TRANSACTION_TYPES
        assert TransactionType.PENALTY not in CASH_TRANSACTION_TYPES
        assert TransactionType.LOAN_CANCEL in CASH_TRANSACTION_TYPES


class TestCashLedger:
    """Test appending and querying entries"""

    def setup_method(self):
        self.state = CooperativeState()
        self.clock = FixedClock("2024-01-01")
        self.ledger = CashLedger(self.state, self.clock)

    def test_append_rounds_and_dates(self):
        entry = self.ledger.append(TransactionType.EXPENSE, "-12.345", "Paper", reference_id="e1")
        assert entry.amount == Decimal('-12.35')
        assert entry.created_at == self.clock.now()
        assert entry.date == date(2024, 1, 1)
        assert self.ledger.entries == [entry]

    def test_entries_are_immutable(self):
        entry = self.ledger.append(TransactionType.EXPENSE, "-1", "Paper")
        with pytest.raises(AttributeError):
            entry.amount = Decimal('5')

    def test_find_by_type_and_reference(self):
        self.ledger.append(TransactionType.LOAN_APPROVAL, "-1000", "Loan", reference_id="loan-1")
        self.ledger.append(TransactionType.RETENTION, "10", "Retention", reference_id="member-1")
        self.ledger.append(TransactionType.LOAN_PAYMENT, "94.62", "Payment", reference_id="member-1")

        assert len(self.ledger.find(reference_id="member-1")) == 2
        assert len(self.ledger.find(TransactionType.RETENTION)) == 1
        assert self.ledger.has_entry(TransactionType.LOAN_APPROVAL, "loan-1")
        assert not self.ledger.has_entry(TransactionType.LOAN_APPROVAL, "loan-2")

    def test_purge_only_touches_its_reference(self):
        """Test removing one reference leaves the others untouched"""
        self.ledger.append(TransactionType.LOAN_APPROVAL, "-1000", "Loan A", reference_id="loan-a")
        self.ledger.append(TransactionType.LOAN_APPROVAL, "-500", "Loan B", reference_id="loan-b")
        self.ledger.append(TransactionType.MANUAL_ADJUSTMENT, "1000", "Reversal A", reference_id="loan-a")

        assert self.ledger.purge_reference("loan-a") == 2
        remaining = self.ledger.entries
        assert len(remaining) == 1
        assert remaining[0].reference_id == "loan-b"
        assert self.ledger.purge_reference("loan-a") == 0

    def test_purge_keeps_entries_up_to_cutoff(self):
        """Test a cutoff protects entries of a closed period"""
        closed = self.ledger.append(TransactionType.LOAN_APPROVAL, "-1000", "Loan A", reference_id="loan-a")
        cutoff = self.clock.now()
        self.clock.advance(days=1)
        self.ledger.append(TransactionType.MANUAL_ADJUSTMENT, "1000", "Reversal A", reference_id="loan-a")

        assert self.ledger.purge_reference("loan-a", since=cutoff) == 1
        assert self.ledger.entries == [closed]

    def test_since(self):
        self.ledger.append(TransactionType.MANUAL_ADJUSTMENT, "10", "Before")
        cutoff = self.clock.now()
        self.clock.advance(seconds=1)
        later = self.ledger.append(TransactionType.MANUAL_ADJUSTMENT, "20", "After")

        assert self.ledger.since(cutoff) == [later]
        assert len(self.ledger.since(None)) == 2


class TestSummary:

    def test_summarize_by_type_and_reference(self):
        transactions = [
            make_transaction(TransactionType.RETENTION, "10.00", "m1"),
            make_transaction(TransactionType.LOAN_PAYMENT, "94.62", "m1"),
            make_transaction(TransactionType.EXPENSE, "-5.00", "e1"),
        ]
        summary = summarize(transactions)
        assert summary.count == 3
        assert summary.total(TransactionType.RETENTION) == Decimal('10.00')
        assert summary.total(TransactionType.REFUND) == Decimal('0')
        assert summary.net_for("m1") == Decimal('104.62')
        assert summary.net_for("unknown") == Decimal('0')

    def test_member_reference_spans_all_member_loans(self, coop, member):
        """Test payments on two loans of one member net under the member id"""
        first = coop.loans.approve(member.id, "1000", "1", 12, date(2024, 1, 1), retention_paid=True)
        second = coop.loans.approve(member.id, "100", "1", 1, date(2024, 1, 1), retention_paid=True)
        coop.loans.pay_installment(first.id, 1)
        coop.loans.pay_installment(second.id, 1)

        summary = summarize(coop.ledger.entries)

        payments = coop.ledger.find(TransactionType.LOAN_PAYMENT)
        assert len(payments) == 2
        assert all(t.reference_id == member.id for t in payments)
        expected = (first.retention_amount + second.retention_amount
                    + sum(t.amount for t in payments))
        assert summary.net_for(member.id) == expected
        assert summary.net_for(first.id) == -first.amount
        assert summary.net_for(second.id) == -second.amount
