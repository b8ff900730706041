"""
Test suite for the loan lifecycle

Tests approval, retention gating, installment and free-form payments,
refinancing and deletion, including the ledger entries each transition
writes and the cash it moves. All financial math must be exact.
"""

import pytest
from decimal import Decimal
from datetime import date

from coop_ledger.activity import ActivityType
from coop_ledger.errors import (
    InvalidLoanTerms, InvalidLoanState, ExcessivePayment, InvalidPaymentAmount,
    LoanNotFound, MemberNotFound
)
from coop_ledger.models import LoanStatus, InstallmentStatus, TransactionType
from coop_ledger.notifications import NotificationKind


def approve(coop, member, amount="1000", term=12, retention_paid=False, **kwargs):
    return coop.loans.approve(
        member_id=member.id,
        amount=amount,
        monthly_interest_rate="1",
        term_months=term,
        start_date=date(2024, 1, 1),
        retention_paid=retention_paid,
        **kwargs
    )


class TestQuote:

    def test_defaults_come_from_config(self, coop):
        quote = coop.loans.quote(1000, 12)
        assert quote.monthly_interest_rate == Decimal('1')
        assert quote.transfer_fee == Decimal('0.41')
        assert quote.start_date == date(2024, 1, 1)
        assert quote.monthly_payment == Decimal('94.21')

    def test_quote_writes_nothing(self, coop):
        coop.loans.quote(1000, 12)
        assert coop.state.loans == {}
        assert coop.state.transactions == []


class TestApproval:
    """Test loan approval"""

    def test_approve_pending_retention(self, coop, member):
        loan = approve(coop, member)

        assert loan.status == LoanStatus.PENDING_RETENTION
        assert loan.amount == Decimal('1000.00')
        assert loan.monthly_payment == Decimal('94.21')
        assert loan.total_amount == Decimal('1130.41')
        assert loan.retention_amount == Decimal('10.00')
        assert loan.remaining_principal == Decimal('1130.52')
        assert loan.paid_principal == Decimal('0')
        assert loan.total_installments == 12
        assert loan.end_date == date(2025, 1, 1)
        assert len(loan.schedule) == 12
        assert coop.loans.get(loan.id) is loan

    def test_approval_disburses_cash(self, coop, member):
        loan = approve(coop, member)

        entries = coop.ledger.find(TransactionType.LOAN_APPROVAL)
        assert len(entries) == 1
        assert entries[0].amount == Decimal('-1000.00')
        assert entries[0].reference_id == loan.id
        assert coop.available_cash() == Decimal('-1000.00')

    def test_approve_with_retention_paid(self, coop, member):
        loan = approve(coop, member, retention_paid=True)

        assert loan.status == LoanStatus.ACTIVE
        retention = coop.ledger.find(TransactionType.RETENTION)
        assert [t.amount for t in retention] == [Decimal('10.00')]
        assert retention[0].reference_id == member.id
        assert coop.available_cash() == Decimal('-990.00')

    def test_retention_override(self, coop, member):
        loan = approve(coop, member, retention_amount="25")
        assert loan.retention_amount == Decimal('25.00')

    def test_retention_uses_configured_rate(self, coop, member):
        coop.update_config(retention_rate="2")
        loan = approve(coop, member)
        assert loan.retention_amount == Decimal('20.00')

    def test_unknown_member(self, coop):
        with pytest.raises(MemberNotFound):
            coop.loans.approve("nobody", 1000, 1, 12, date(2024, 1, 1))

    def test_invalid_terms_leave_state_untouched(self, coop, member):
        with pytest.raises(InvalidLoanTerms):
            approve(coop, member, amount="0")
        with pytest.raises(InvalidLoanTerms):
            approve(coop, member, term=0)
        assert coop.state.loans == {}
        assert coop.state.transactions == []

    def test_config_change_does_not_touch_existing_loans(self, coop, member):
        loan = approve(coop, member)
        coop.update_config(transfer_fee="1.00", monthly_interest_rate="3")
        assert loan.transfer_fee == Decimal('0.41')
        assert loan.monthly_payment == Decimal('94.21')


class TestRetention:
    """Test the retention gate"""

    def test_pay_retention_activates(self, coop, member, notifier):
        loan = approve(coop, member)
        coop.loans.pay_retention(loan.id)

        assert loan.status == LoanStatus.ACTIVE
        assert loan.retention_paid
        assert coop.available_cash() == Decimal('-990.00')
        assert notifier.last.title == "Retention collected"

    def test_payments_blocked_until_retention(self, coop, member):
        loan = approve(coop, member)

        with pytest.raises(InvalidLoanState):
            coop.loans.pay_installment(loan.id, 1)
        with pytest.raises(InvalidLoanState):
            coop.loans.prepay(loan.id, 50)
        with pytest.raises(InvalidLoanState):
            coop.loans.refinance(loan.id, 6)
        assert len(coop.state.transactions) == 1

    def test_retention_only_once(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        with pytest.raises(InvalidLoanState):
            coop.loans.pay_retention(loan.id)

    def test_unknown_loan(self, coop):
        with pytest.raises(LoanNotFound):
            coop.loans.pay_retention("missing")


class TestInstallments:
    """Test schedule-exact payments"""

    def test_pay_installment(self, coop, member, clock):
        loan = approve(coop, member, retention_paid=True)
        clock.advance(months=1)
        coop.loans.pay_installment(loan.id, 1)

        entry = loan.installment(1)
        assert entry.status == InstallmentStatus.PAID
        assert entry.paid_date == date(2024, 2, 1)
        assert loan.paid_installments == 1
        assert loan.remaining_principal == Decimal('1036.31')

        payments = coop.ledger.find(TransactionType.LOAN_PAYMENT)
        assert payments[0].amount == Decimal('94.62')
        assert payments[0].reference_id == member.id
        assert coop.available_cash() == Decimal('-895.38')

    def test_remaining_never_increases(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        previous = loan.remaining_principal
        for number in range(1, 13):
            coop.loans.pay_installment(loan.id, number)
            assert loan.remaining_principal <= previous
            assert 0 <= loan.paid_installments <= loan.total_installments
            previous = loan.remaining_principal

        assert loan.status == LoanStatus.PAID
        assert loan.remaining_principal == Decimal('0')
        assert loan.paid_principal == loan.total_amount

    def test_paid_installment_cannot_be_paid_again(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.pay_installment(loan.id, 3)
        with pytest.raises(InvalidLoanState):
            coop.loans.pay_installment(loan.id, 3)
        assert len(coop.ledger.find(TransactionType.LOAN_PAYMENT)) == 1

    def test_out_of_range_installment_is_ignored(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        result = coop.loans.pay_installment(loan.id, 13)
        assert result is loan
        assert loan.paid_installments == 0
        assert coop.ledger.find(TransactionType.LOAN_PAYMENT) == []

    def test_paid_loan_accepts_no_more_payments(self, coop, member):
        loan = approve(coop, member, amount="100", term=1, retention_paid=True)
        coop.loans.pay_installment(loan.id, 1)
        assert loan.status == LoanStatus.PAID
        entries = len(coop.state.transactions)

        with pytest.raises(InvalidLoanState):
            coop.loans.prepay(loan.id, 1)
        with pytest.raises(InvalidLoanState):
            coop.loans.pay_installment(loan.id, 1)
        with pytest.raises(InvalidLoanState):
            coop.loans.refinance(loan.id, 6)

        assert loan.status == LoanStatus.PAID
        assert len(coop.state.transactions) == entries


class TestPrepayment:
    """Test free-form payments"""

    def test_prepay_partial(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.prepay(loan.id, 50)

        assert loan.remaining_principal == Decimal('1080.52')
        assert loan.paid_principal == Decimal('50.00')
        assert loan.paid_installments == 0
        assert loan.status == LoanStatus.ACTIVE
        payment = coop.ledger.find(TransactionType.LOAN_PAYMENT)[0]
        assert payment.amount == Decimal('50.41')
        assert payment.reference_id == member.id

    def test_prepay_full_balance(self, coop, member, notifier):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.prepay(loan.id, "1130.52")

        assert loan.status == LoanStatus.PAID
        assert loan.remaining_principal == Decimal('0')
        assert loan.paid_installments == 12
        assert notifier.last.title == "Loan paid off"

    def test_excessive_payment_leaves_state_unchanged(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        before = coop.state.to_collections()

        with pytest.raises(ExcessivePayment) as exc_info:
            coop.loans.prepay(loan.id, 2000)

        assert exc_info.value.remaining == Decimal('1130.52')
        assert coop.state.to_collections() == before

    def test_invalid_amounts(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        with pytest.raises(InvalidPaymentAmount):
            coop.loans.prepay(loan.id, -5)
        with pytest.raises(InvalidPaymentAmount):
            coop.loans.prepay(loan.id, 0)
        assert coop.ledger.find(TransactionType.LOAN_PAYMENT) == []

    def test_paying_the_exact_remainder(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.prepay(loan.id, "1080.52")
        assert loan.remaining_principal == Decimal('50.00')
        assert loan.paid_installments == 11

        coop.loans.prepay(loan.id, 50)
        assert loan.status == LoanStatus.PAID
        assert loan.paid_installments == loan.total_installments

    def test_payment_within_a_cent_closes_loan(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.prepay(loan.id, "1130.51")
        assert loan.status == LoanStatus.PAID
        assert loan.remaining_principal == Decimal('0')

    def test_zero_closes_a_settled_balance(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        loan.remaining_principal = Decimal('0.01')
        coop.loans.prepay(loan.id, 0)
        assert loan.status == LoanStatus.PAID
        assert coop.ledger.find(TransactionType.LOAN_PAYMENT)[0].amount == Decimal('0.41')

    def test_schedule_rows_untouched_by_prepayment(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.prepay(loan.id, 300)
        assert all(e.status == InstallmentStatus.PENDING for e in loan.schedule)
        assert loan.paid_installments == 3


class TestRefinance:
    """Test refinancing"""

    def test_refinance_creates_successor(self, coop, member, clock):
        source = approve(coop, member, retention_paid=True)
        coop.loans.pay_installment(source.id, 1)
        clock.advance(months=1)

        successor = coop.loans.refinance(source.id, 6)

        assert source.status == LoanStatus.REFINANCED
        assert successor.status == LoanStatus.PENDING_RETENTION
        assert successor.amount == Decimal('1036.31')
        assert successor.term_months == 6
        assert successor.start_date == date(2024, 2, 1)
        assert successor.refinanced_from_id == source.id
        assert successor.member_id == member.id

        approvals = coop.ledger.find(TransactionType.LOAN_APPROVAL, successor.id)
        assert [t.amount for t in approvals] == [Decimal('-1036.31')]
        assert coop.activity.by_type(ActivityType.LOAN_REFINANCE)

    def test_refinanced_loan_is_closed(self, coop, member):
        source = approve(coop, member, retention_paid=True)
        coop.loans.refinance(source.id, 6)
        entries = len(coop.state.transactions)

        with pytest.raises(InvalidLoanState):
            coop.loans.pay_installment(source.id, 1)
        with pytest.raises(InvalidLoanState):
            coop.loans.prepay(source.id, 50)
        with pytest.raises(InvalidLoanState):
            coop.loans.refinance(source.id, 6)

        assert source.status == LoanStatus.REFINANCED
        assert len(coop.state.transactions) == entries

    def test_refinance_uses_current_default_rate(self, coop, member):
        source = approve(coop, member, retention_paid=True)
        coop.update_config(monthly_interest_rate="2")
        successor = coop.loans.refinance(source.id, 12)
        assert successor.monthly_interest_rate == Decimal('2')

    def test_invalid_term_leaves_source_active(self, coop, member):
        source = approve(coop, member, retention_paid=True)
        with pytest.raises(InvalidLoanTerms):
            coop.loans.refinance(source.id, 0)
        assert source.status == LoanStatus.ACTIVE
        assert len(coop.state.loans) == 1


class TestDeletion:
    """Test corrective deletion"""

    def test_delete_pending_loan_restores_cash(self, coop, member):
        coop.contributions.add(member.id, "2024-01")
        before = coop.available_cash()
        loan = approve(coop, member)

        coop.loans.delete(loan.id)

        assert coop.loans.get(loan.id) is None
        assert coop.available_cash() == before
        assert coop.ledger.find(reference_id=loan.id) == []

    def test_delete_active_loan_restores_cash(self, coop, member):
        before = coop.available_cash()
        loan = approve(coop, member, retention_paid=True)
        assert coop.available_cash() == before - Decimal('990.00')

        coop.loans.delete(loan.id)

        assert coop.available_cash() == before
        reversals = coop.ledger.find(TransactionType.MANUAL_ADJUSTMENT)
        assert [t.amount for t in reversals] == [Decimal('-10.00')]
        assert reversals[0].reference_id == member.id

    def test_payments_survive_deletion(self, coop, member):
        loan = approve(coop, member, retention_paid=True)
        coop.loans.pay_installment(loan.id, 1)

        coop.loans.delete(loan.id)

        assert len(coop.ledger.find(TransactionType.LOAN_PAYMENT)) == 1
        assert coop.available_cash() == Decimal('94.62')

    def test_delete_after_annual_closing(self, coop, member, clock):
        coop.adjust_cashbox(5000)
        loan = approve(coop, member, retention_paid=True)
        coop.annual_closing()
        clock.advance(days=1)
        before = coop.available_cash()
        assert before == Decimal('4010.00')

        coop.loans.delete(loan.id)

        assert coop.available_cash() == before + Decimal('990.00')
        assert len(coop.ledger.find(TransactionType.LOAN_APPROVAL, loan.id)) == 1
        reversals = coop.ledger.find(TransactionType.MANUAL_ADJUSTMENT, member.id)
        assert sorted(t.amount for t in reversals) == [Decimal('-10.00'), Decimal('1000.00')]

    def test_delete_unknown(self, coop):
        with pytest.raises(LoanNotFound):
            coop.loans.delete("missing")


class TestAtomicity:
    """Test a failing operation leaves no partial changes"""

    def test_failure_mid_operation_rolls_back(self, coop, member, monkeypatch):
        loan = approve(coop, member)
        before = coop.state.to_collections()

        def broken_log(*args, **kwargs):
            raise RuntimeError("activity log unavailable")

        monkeypatch.setattr(coop.activity, "log", broken_log)
        with pytest.raises(RuntimeError):
            coop.loans.pay_retention(loan.id)

        assert coop.state.to_collections() == before
        restored = coop.loans.get(loan.id)
        assert restored.status == LoanStatus.PENDING_RETENTION
        assert coop.ledger.find(TransactionType.RETENTION) == []

    def test_notifies_success(self, coop, member, notifier):
        approve(coop, member)
        assert notifier.last.kind == NotificationKind.SUCCESS
        assert notifier.last.title == "Loan approved"
