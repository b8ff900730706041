"""
Loan Module

Handles loan quoting, approval, retention collection, installment payments,
free-form prepayments, refinancing and corrective deletion. Every transition
writes the ledger entries it implies and is applied atomically: validation
happens first and any failure leaves the cooperative untouched.
"""

from decimal import Decimal
from typing import List, Optional
import logging
import uuid

from .activity import ActivityType
from .amortization import AmortizationEngine, LoanQuote
from .dates import DateLike, parse_date
from .errors import (
    InvalidLoanTerms, InvalidLoanState, ExcessivePayment, InvalidPaymentAmount, LoanNotFound
)
from .logging_config import log_action
from .models import Loan, LoanStatus, TransactionType
from .money import Amount, ZERO, to_decimal, round_cents, percent_of, is_approximately_zero, format_amount
from .notifications import NotificationKind
from .settlement import ScheduleExactSettlement, FreeformSettlement

logger = logging.getLogger(__name__)


class LoanManager:
    """
    Manages the loan lifecycle:

        (new) -> pending_retention -> active -> {paid, refinanced}

    pending_retention -> active only through pay_retention(); any loan can be
    removed with delete().
    """

    def __init__(self, coop, engine: Optional[AmortizationEngine] = None):
        self.coop = coop
        self.engine = engine or AmortizationEngine()
        self.schedule_settlement = ScheduleExactSettlement()
        self.freeform_settlement = FreeformSettlement()

    # Queries

    def get(self, loan_id: str) -> Optional[Loan]:
        return self.coop.state.loans.get(loan_id)

    def require(self, loan_id: str) -> Loan:
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        return loan

    def list(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        loans = list(self.coop.state.loans.values())
        if status is not None:
            loans = [loan for loan in loans if loan.status == status]
        return loans

    def for_member(self, member_id: str) -> List[Loan]:
        return [loan for loan in self.coop.state.loans.values() if loan.member_id == member_id]

    # Operations

    def quote(
        self,
        amount: Amount,
        term_months: int,
        monthly_interest_rate: Optional[Amount] = None,
        start_date: Optional[DateLike] = None,
        transfer_fee: Optional[Amount] = None
    ) -> LoanQuote:
        """Preview a loan with the cooperative's defaults for anything omitted"""
        config = self.coop.state.config
        return self.engine.quote(
            amount,
            config.monthly_interest_rate if monthly_interest_rate is None else monthly_interest_rate,
            term_months,
            parse_date(start_date) if start_date is not None else self.coop.clock.today(),
            config.transfer_fee if transfer_fee is None else transfer_fee
        )

    def approve(
        self,
        member_id: str,
        amount: Amount,
        monthly_interest_rate: Amount,
        term_months: int,
        start_date: DateLike,
        retention_paid: bool = False,
        retention_amount: Optional[Amount] = None,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Approve and disburse a new loan

        Args:
            member_id: Borrower
            amount: Principal disbursed from the cash box
            monthly_interest_rate: Simple interest in percent per month
            term_months: Number of installments
            start_date: First installment falls due one month later
            retention_paid: Retention already collected at approval
            retention_amount: Overrides the configured retention rate
            notes: Free text

        Returns:
            Created Loan, `active` when retention was pre-paid, otherwise
            `pending_retention`

        Raises:
            MemberNotFound: unknown borrower
            InvalidLoanTerms: non-positive amount or term
        """
        member = self.coop.members.require(member_id)
        config = self.coop.state.config
        amount = to_decimal(amount)
        start = parse_date(start_date)

        quote = self.engine.quote(amount, monthly_interest_rate, term_months, start, config.transfer_fee)

        if retention_amount is None:
            retention = round_cents(percent_of(amount, config.retention_rate))
        else:
            retention = round_cents(retention_amount)
            if retention < ZERO:
                raise InvalidLoanTerms(f"Retention cannot be negative, got {retention}")

        with self.coop.atomic():
            loan = Loan(
                id=str(uuid.uuid4()),
                member_id=member.id,
                member_name=member.name,
                amount=round_cents(amount),
                monthly_interest_rate=quote.monthly_interest_rate,
                term_months=term_months,
                start_date=start,
                end_date=quote.end_date,
                transfer_fee=quote.transfer_fee,
                monthly_payment=quote.monthly_payment,
                total_interest=quote.total_interest,
                total_amount=quote.total_amount,
                retention_amount=retention,
                created_at=self.coop.clock.now(),
                schedule=quote.schedule,
                paid_principal=ZERO,
                remaining_principal=round_cents(quote.monthly_payment * term_months),
                paid_installments=0,
                total_installments=term_months,
                retention_paid=retention_paid,
                status=LoanStatus.ACTIVE if retention_paid else LoanStatus.PENDING_RETENTION,
                notes=notes
            )
            self.coop.state.loans[loan.id] = loan

            self.coop.ledger.append(
                TransactionType.LOAN_APPROVAL, -loan.amount,
                f"Loan disbursement - {member.name}", reference_id=loan.id
            )
            if retention_paid:
                self.coop.ledger.append(
                    TransactionType.RETENTION, retention,
                    f"Loan retention - {member.name}", reference_id=member.id
                )

            self.coop.activity.log(
                ActivityType.LOAN_ADD,
                f"Loan approved: {member.name} - {self._fmt(loan.amount)}",
                details={
                    "amount": loan.amount,
                    "monthly_interest_rate": loan.monthly_interest_rate,
                    "term_months": loan.term_months,
                    "monthly_payment": loan.monthly_payment,
                    "retention_amount": retention,
                    "retention_paid": retention_paid
                },
                reference_id=loan.id
            )

        log_action(logger, "info", "Loan approved", action="loan_approved",
                   entity_type="loan", entity_id=loan.id,
                   extra={"member_id": member.id, "amount": str(loan.amount),
                          "status": loan.status.value})
        self.coop.notify(
            NotificationKind.SUCCESS, "Loan approved",
            f"{self._fmt(loan.amount)} for {member.name}, "
            f"{term_months} installments of {self._fmt(loan.monthly_payment)}"
        )
        return loan

    def pay_retention(self, loan_id: str) -> Loan:
        """Collect the retention of a pending loan and activate it"""
        loan = self.require(loan_id)
        if loan.status != LoanStatus.PENDING_RETENTION:
            raise InvalidLoanState(
                f"Retention can only be collected on pending_retention loans, "
                f"loan {loan_id} is {loan.status.value}"
            )

        with self.coop.atomic():
            loan.retention_paid = True
            loan.status = LoanStatus.ACTIVE
            self.coop.ledger.append(
                TransactionType.RETENTION, loan.retention_amount,
                f"Loan retention - {loan.member_name}", reference_id=loan.member_id
            )
            self.coop.activity.log(
                ActivityType.LOAN_RETENTION_PAY,
                f"Retention collected: {loan.member_name} - {self._fmt(loan.retention_amount)}",
                details={"retention_amount": loan.retention_amount},
                reference_id=loan.id
            )

        log_action(logger, "info", "Loan retention collected", action="loan_retention_paid",
                   entity_type="loan", entity_id=loan.id)
        self.coop.notify(NotificationKind.SUCCESS, "Retention collected",
                         f"Loan for {loan.member_name} is now active")
        return loan

    def pay_installment(self, loan_id: str, installment_number: int) -> Loan:
        """
        Pay one scheduled installment.

        Installment numbers outside the schedule are ignored.

        Raises:
            InvalidLoanState: loan not active, or installment already paid
        """
        loan = self.require(loan_id)
        self._require_active(loan, "pay installments on")

        entry = loan.installment(installment_number)
        if entry is None:
            logger.warning("Installment %s not in schedule of loan %s", installment_number, loan_id)
            return loan
        if entry.is_paid:
            raise InvalidLoanState(f"Installment {installment_number} of loan {loan_id} is already paid")

        with self.coop.atomic():
            cash = self.schedule_settlement.settle(loan, installment_number, self.coop.clock.today())
            self.coop.ledger.append(
                TransactionType.LOAN_PAYMENT, cash,
                f"Installment {installment_number}/{loan.total_installments} - {loan.member_name}",
                reference_id=loan.member_id
            )
            self.coop.activity.log(
                ActivityType.LOAN_PAY,
                f"Installment {installment_number} paid: {loan.member_name} - {self._fmt(cash)}",
                details={
                    "installment_number": installment_number,
                    "amount": cash,
                    "remaining_principal": loan.remaining_principal,
                    "status": loan.status
                },
                reference_id=loan.id
            )

        self._announce_payment(loan, cash)
        return loan

    def prepay(self, loan_id: str, amount: Amount) -> Loan:
        """
        Apply a free-form payment to the remaining balance

        A zero amount is accepted only to close a loan whose remaining
        balance is already within a cent of zero.

        Raises:
            InvalidLoanState: loan not active
            InvalidPaymentAmount: negative amount, or zero with a balance left
            ExcessivePayment: amount larger than the remaining balance
        """
        amount = round_cents(amount)
        loan = self.require(loan_id)
        self._require_active(loan, "prepay")

        outstanding = not is_approximately_zero(loan.remaining_principal)
        if amount < ZERO:
            raise InvalidPaymentAmount(f"Payment amount cannot be negative, got {amount}")
        if amount == ZERO and outstanding:
            raise InvalidPaymentAmount(
                f"Loan {loan_id} still owes {loan.remaining_principal}, a zero payment cannot close it"
            )
        if amount > loan.remaining_principal and outstanding:
            raise ExcessivePayment(loan_id, amount, loan.remaining_principal)

        with self.coop.atomic():
            cash = self.freeform_settlement.settle(loan, amount)
            self.coop.ledger.append(
                TransactionType.LOAN_PAYMENT, cash,
                f"Loan prepayment - {loan.member_name}", reference_id=loan.member_id
            )
            self.coop.activity.log(
                ActivityType.LOAN_PAY,
                f"Prepayment: {loan.member_name} - {self._fmt(cash)}",
                details={
                    "amount": amount,
                    "recorded": cash,
                    "remaining_principal": loan.remaining_principal,
                    "paid_installments": loan.paid_installments,
                    "status": loan.status
                },
                reference_id=loan.id
            )

        self._announce_payment(loan, cash)
        return loan

    def refinance(self, loan_id: str, new_term_months: int, notes: Optional[str] = None) -> Loan:
        """
        Replace an active loan with a new one for its remaining balance.

        The new loan uses the cooperative's current default rate, starts
        today and waits for its own retention. The source loan's ledger
        entries are left as they are.

        Returns:
            The new loan
        """
        source = self.require(loan_id)
        self._require_active(source, "refinance")
        if not isinstance(new_term_months, int) or isinstance(new_term_months, bool) or new_term_months <= 0:
            raise InvalidLoanTerms(f"Term must be a positive number of months, got {new_term_months!r}")

        with self.coop.atomic():
            source.status = LoanStatus.REFINANCED
            successor = self.approve(
                member_id=source.member_id,
                amount=source.remaining_principal,
                monthly_interest_rate=self.coop.state.config.monthly_interest_rate,
                term_months=new_term_months,
                start_date=self.coop.clock.today(),
                notes=notes or f"Refinancing of loan {source.id}"
            )
            successor.refinanced_from_id = source.id

            self.coop.activity.log(
                ActivityType.LOAN_REFINANCE,
                f"Loan refinanced: {source.member_name} - {self._fmt(successor.amount)}",
                details={
                    "source_loan_id": source.id,
                    "new_loan_id": successor.id,
                    "amount": successor.amount,
                    "term_months": new_term_months
                },
                reference_id=source.id
            )

        log_action(logger, "info", "Loan refinanced", action="loan_refinanced",
                   entity_type="loan", entity_id=source.id,
                   extra={"new_loan_id": successor.id, "amount": str(successor.amount)})
        return successor

    def delete(self, loan_id: str) -> Loan:
        """
        Remove a loan entered by mistake.

        Offsets the disbursement and any collected retention with
        manual adjustments, then purges the ledger entries referencing the
        loan that belong to the open period and removes the record.
        Installment and prepayment entries stay in the ledger.

        An approval dated at or before the last annual closing is already
        folded into the opening balance. It is kept, and its reversal is
        referenced to the member so that the purge leaves it in place.

        Returns:
            The removed loan
        """
        loan = self.require(loan_id)
        ledger = self.coop.ledger
        period_start = self.coop.state.config.period_start

        with self.coop.atomic():
            for approval in ledger.find(TransactionType.LOAN_APPROVAL, loan.id):
                closed = period_start is not None and approval.created_at <= period_start
                ledger.append(
                    TransactionType.MANUAL_ADJUSTMENT, -approval.amount,
                    f"Reversal of loan disbursement - {loan.member_name}",
                    reference_id=loan.member_id if closed else loan.id
                )
            if loan.retention_paid:
                ledger.append(
                    TransactionType.MANUAL_ADJUSTMENT, -loan.retention_amount,
                    f"Reversal of loan retention - {loan.member_name}", reference_id=loan.member_id
                )
            purged = ledger.purge_reference(loan.id, since=period_start)
            del self.coop.state.loans[loan.id]

            self.coop.activity.log(
                ActivityType.LOAN_DELETE,
                f"Loan deleted: {loan.member_name} - {self._fmt(loan.amount)}",
                details={
                    "amount": loan.amount,
                    "status": loan.status,
                    "retention_paid": loan.retention_paid,
                    "purged_entries": purged
                },
                reference_id=loan.id
            )

        log_action(logger, "info", "Loan deleted", action="loan_deleted",
                   entity_type="loan", entity_id=loan.id, extra={"purged_entries": purged})
        self.coop.notify(NotificationKind.SUCCESS, "Loan deleted",
                         f"Loan for {loan.member_name} removed")
        return loan

    def _require_active(self, loan: Loan, action: str) -> None:
        if loan.status != LoanStatus.ACTIVE:
            raise InvalidLoanState(f"Cannot {action} loan {loan.id} in status {loan.status.value}")

    def _announce_payment(self, loan: Loan, cash: Decimal) -> None:
        log_action(logger, "info", "Loan payment recorded", action="loan_payment",
                   entity_type="loan", entity_id=loan.id,
                   extra={"amount": str(cash), "remaining_principal": str(loan.remaining_principal),
                          "status": loan.status.value})
        if loan.status == LoanStatus.PAID:
            self.coop.notify(NotificationKind.SUCCESS, "Loan paid off",
                             f"{loan.member_name} has settled the loan")
        else:
            self.coop.notify(NotificationKind.SUCCESS, "Payment recorded",
                             f"{self._fmt(cash)} from {loan.member_name}")

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self.coop.state.config.currency_symbol)
