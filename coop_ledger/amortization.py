"""
Amortization Engine Module

Quotes a loan under the cooperative's flat-total model: simple interest on
the original amount for every month of the term, a one-off retention and a
one-off transfer fee are added to the principal, and the total is split into
equal installments rounded up to the cent.

The per-row split shown in the schedule is informational. Interest for each
row is taken on the running balance, so the principal column does not sum to
the loan amount; only the installment amount and the totals are binding.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List

from .dates import add_months
from .errors import InvalidLoanTerms
from .models import AmortizationEntry, InstallmentStatus, encode_value
from .money import (
    Amount, HUNDRED, ZERO, to_decimal, round_cents, ceil_cents, percent_of
)

# Retention charged inside a quote, in percent of the amount. Independent of
# the configurable retention rate applied when a loan is approved.
QUOTE_RETENTION_RATE = Decimal('1')


@dataclass
class LoanQuote:
    """Result of quoting a loan; nothing is persisted"""
    amount: Decimal
    monthly_interest_rate: Decimal
    term_months: int
    start_date: date
    transfer_fee: Decimal
    retention: Decimal
    total_interest: Decimal
    total_transfer_fees: Decimal
    total_amount: Decimal
    monthly_payment: Decimal
    schedule: List[AmortizationEntry] = field(default_factory=list)

    @property
    def end_date(self) -> date:
        return self.schedule[-1].due_date if self.schedule else self.start_date

    def to_dict(self) -> Dict[str, Any]:
        result = {k: encode_value(v) for k, v in self.__dict__.items() if k != 'schedule'}
        result['end_date'] = self.end_date.isoformat()
        result['schedule'] = [entry.to_dict() for entry in self.schedule]
        return result


class AmortizationEngine:
    """Pure quote calculator; identical inputs give identical quotes"""

    def __init__(self, retention_rate: Decimal = QUOTE_RETENTION_RATE):
        self.retention_rate = to_decimal(retention_rate)

    def quote(
        self,
        amount: Amount,
        monthly_interest_rate: Amount,
        term_months: int,
        start_date: date,
        transfer_fee: Amount
    ) -> LoanQuote:
        """
        Quote a loan

        Args:
            amount: Principal lent
            monthly_interest_rate: Simple interest in percent per month
            term_months: Number of monthly installments
            start_date: Installment k falls due k months after this date
            transfer_fee: Flat fee added once to the total

        Returns:
            LoanQuote with totals and the full schedule

        Raises:
            InvalidLoanTerms: amount or term not positive, negative rate or fee
        """
        amount = to_decimal(amount)
        rate = to_decimal(monthly_interest_rate)
        fee = to_decimal(transfer_fee)

        if not isinstance(term_months, int) or isinstance(term_months, bool) or term_months <= 0:
            raise InvalidLoanTerms(f"Term must be a positive number of months, got {term_months!r}")
        if amount <= ZERO:
            raise InvalidLoanTerms(f"Loan amount must be positive, got {amount}")
        if rate < ZERO:
            raise InvalidLoanTerms(f"Interest rate cannot be negative, got {rate}")
        if fee < ZERO:
            raise InvalidLoanTerms(f"Transfer fee cannot be negative, got {fee}")

        retention = percent_of(amount, self.retention_rate)
        total_interest = percent_of(amount, rate) * term_months
        total_amount = amount + retention + total_interest + fee
        monthly_payment = ceil_cents(total_amount / term_months)

        schedule = self._build_schedule(amount, rate / HUNDRED, term_months, start_date,
                                        fee, monthly_payment)

        return LoanQuote(
            amount=amount,
            monthly_interest_rate=rate,
            term_months=term_months,
            start_date=start_date,
            transfer_fee=fee,
            retention=round_cents(retention),
            total_interest=round_cents(total_interest),
            total_transfer_fees=fee,
            total_amount=round_cents(total_amount),
            monthly_payment=monthly_payment,
            schedule=schedule
        )

    def _build_schedule(
        self,
        amount: Decimal,
        rate: Decimal,
        term_months: int,
        start_date: date,
        transfer_fee: Decimal,
        monthly_payment: Decimal
    ) -> List[AmortizationEntry]:
        schedule = []
        remaining = amount

        for number in range(1, term_months + 1):
            interest = round_cents(remaining * rate)
            principal = round_cents(monthly_payment - interest)
            remaining = round_cents(remaining - principal)
            if number == term_months:
                remaining = ZERO

            schedule.append(AmortizationEntry(
                installment_number=number,
                due_date=add_months(start_date, number),
                principal=principal,
                interest=interest,
                transfer_fee=transfer_fee,
                payment=monthly_payment,
                # Interest keeps running on a negative balance; only the shown balance is clamped
                balance=round_cents(max(ZERO, remaining)),
                status=InstallmentStatus.PENDING
            ))

        return schedule
