"""
Settlement Strategies Module

Two ways of applying a payment to a loan, kept apart on purpose:

- ScheduleExactSettlement pays one installment of the frozen schedule and
  derives the remaining balance from the rows still pending.
- FreeformSettlement applies an arbitrary amount to the remaining balance
  and leaves the schedule rows alone.

Both only mutate the loan and return the cash amount to record; ledger
writes are the caller's job.
"""

from datetime import date
from decimal import Decimal, ROUND_FLOOR

from .models import Loan, LoanStatus, InstallmentStatus
from .money import ZERO, round_cents, is_approximately_zero


class ScheduleExactSettlement:

    def settle(self, loan: Loan, installment_number: int, paid_on: date) -> Decimal:
        """Mark one installment paid; returns monthly payment plus transfer fee"""
        entry = loan.installment(installment_number)
        entry.status = InstallmentStatus.PAID
        entry.paid_date = paid_on

        remaining = round_cents(sum((e.payment for e in loan.unpaid_installments()), ZERO))
        loan.remaining_principal = remaining
        loan.paid_principal = round_cents(loan.total_amount - remaining)
        loan.paid_installments = min(loan.paid_installments + 1, loan.total_installments)

        if is_approximately_zero(remaining):
            loan.remaining_principal = ZERO
            loan.paid_principal = loan.total_amount
            loan.status = LoanStatus.PAID

        return round_cents(loan.monthly_payment + loan.transfer_fee)


class FreeformSettlement:

    def settle(self, loan: Loan, amount: Decimal) -> Decimal:
        """
        Apply `amount` to the remaining balance.

        The applied amount is capped at the remaining balance. Installments
        are credited in whole multiples of the monthly payment. Returns the
        applied amount plus the loan's transfer fee.

        `paid_principal` stays the running sum of applied amounts on payoff.
        It is not reset to the disbursed amount, so a paid loan reports the
        interest-bearing total it settled.
        """
        actual = min(amount, loan.remaining_principal)
        remaining = round_cents(loan.remaining_principal - actual)
        fully_paid = is_approximately_zero(remaining)

        loan.remaining_principal = ZERO if fully_paid else max(ZERO, remaining)
        loan.paid_principal = round_cents(loan.paid_principal + actual)

        if fully_paid:
            loan.paid_installments = loan.total_installments
            loan.status = LoanStatus.PAID
        elif loan.monthly_payment > ZERO:
            covered = int((actual / loan.monthly_payment).to_integral_value(rounding=ROUND_FLOOR))
            loan.paid_installments = min(loan.paid_installments + covered, loan.total_installments)

        return round_cents(actual + loan.transfer_fee)
