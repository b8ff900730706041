"""
Reporting Module

Read-only aggregates over a cooperative: dashboard figures and per-member
statements. Nothing here mutates state.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .dates import periods_elapsed
from .models import LoanStatus, MemberStatus, encode_value
from .money import ZERO, HUNDRED, round_cents


@dataclass
class DashboardStats:
    total_members: int
    active_members: int
    total_loans: int
    active_loans: int
    total_loaned: Decimal
    total_contributions: Decimal  # Paid contributions net of refunds
    total_interest_earned: Decimal
    total_penalties: Decimal
    total_expenses: Decimal
    available_cash: Decimal
    late_loans: int
    delinquency_rate: Decimal  # Percent of active loans behind schedule
    pending_retentions: int
    pending_retention_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {k: encode_value(v) for k, v in self.__dict__.items()}


@dataclass
class MemberStatement:
    member_id: str
    name: str
    savings: Decimal
    pending_debt: Decimal
    penalties: Decimal
    net_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {k: encode_value(v) for k, v in self.__dict__.items()}


@dataclass
class StatementReport:
    rows: List[MemberStatement] = field(default_factory=list)
    total_savings: Decimal = ZERO
    total_pending_debt: Decimal = ZERO
    total_penalties: Decimal = ZERO
    total_net_balance: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "total_savings": str(self.total_savings),
            "total_pending_debt": str(self.total_pending_debt),
            "total_penalties": str(self.total_penalties),
            "total_net_balance": str(self.total_net_balance),
        }


def is_loan_late(loan, today: date) -> bool:
    """Active loan with fewer paid installments than 30-day periods since its start"""
    if loan.status != LoanStatus.ACTIVE:
        return False
    return loan.paid_installments < periods_elapsed(loan.start_date, today)


def dashboard_stats(coop, today: Optional[date] = None) -> DashboardStats:
    state = coop.state
    today = today or coop.clock.today()
    members = list(state.members.values())
    loans = list(state.loans.values())
    paid_contributions = [c for c in state.contributions.values() if c.is_paid]

    active_loans = [l for l in loans if l.status == LoanStatus.ACTIVE]
    pending = [l for l in loans if l.status == LoanStatus.PENDING_RETENTION]
    late = [l for l in active_loans if is_loan_late(l, today)]

    interest_earned = sum(
        (l.total_interest * l.paid_installments / (l.total_installments or 1) for l in loans), ZERO
    )
    contributions = (sum((c.total_amount for c in paid_contributions), ZERO)
                     - sum((r.amount for r in state.refunds.values()), ZERO))

    if active_loans:
        delinquency = round_cents(Decimal(len(late)) * HUNDRED / Decimal(len(active_loans)))
    else:
        delinquency = round_cents(ZERO)

    return DashboardStats(
        total_members=len(members),
        active_members=sum(1 for m in members if m.status == MemberStatus.ACTIVE),
        total_loans=len(loans),
        active_loans=len(active_loans),
        total_loaned=round_cents(sum((l.amount for l in loans), ZERO)),
        total_contributions=round_cents(contributions),
        total_interest_earned=round_cents(interest_earned),
        total_penalties=round_cents(sum((c.penalty_amount for c in paid_contributions), ZERO)),
        total_expenses=round_cents(sum((e.amount for e in state.expenses.values()), ZERO)),
        available_cash=coop.available_cash(),
        late_loans=len(late),
        delinquency_rate=delinquency,
        pending_retentions=len(pending),
        pending_retention_amount=round_cents(sum((l.retention_amount for l in pending), ZERO)),
    )


def member_statements(coop) -> StatementReport:
    """Savings, outstanding debt and penalties of every active member, sorted by name"""
    state = coop.state
    report = StatementReport()

    members = sorted(
        (m for m in state.members.values() if m.status == MemberStatus.ACTIVE),
        key=lambda m: m.name.lower()
    )
    for member in members:
        paid = [c for c in state.contributions.values() if c.member_id == member.id and c.is_paid]
        savings = round_cents(sum((c.savings_amount for c in paid), ZERO))
        penalties = round_cents(sum((c.penalty_amount for c in paid), ZERO))
        debt = round_cents(sum(
            (l.remaining_principal for l in state.loans.values()
             if l.member_id == member.id and l.status == LoanStatus.ACTIVE),
            ZERO
        ))
        report.rows.append(MemberStatement(
            member_id=member.id,
            name=member.name,
            savings=savings,
            pending_debt=debt,
            penalties=penalties,
            net_balance=round_cents(savings - debt)
        ))

    report.total_savings = round_cents(sum((r.savings for r in report.rows), ZERO))
    report.total_pending_debt = round_cents(sum((r.pending_debt for r in report.rows), ZERO))
    report.total_penalties = round_cents(sum((r.penalties for r in report.rows), ZERO))
    report.total_net_balance = round_cents(sum((r.net_balance for r in report.rows), ZERO))
    return report
