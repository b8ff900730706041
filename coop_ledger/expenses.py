"""
Expense and Refund Module

Outflows of the cash box that are not loans: operating expenses and money
returned to members who leave. Deleting either record appends an entry of
the same type that offsets the original.
"""

from decimal import Decimal
from typing import List, Optional
import logging
import uuid

from .activity import ActivityType
from .dates import DateLike, parse_date
from .errors import RecordNotFound
from .logging_config import log_action
from .models import Expense, ExpenseCategory, Refund, TransactionType
from .money import Amount, ZERO, round_cents, format_amount
from .notifications import NotificationKind

logger = logging.getLogger(__name__)


def _positive(amount: Amount, what: str) -> Decimal:
    value = round_cents(amount)
    if value <= ZERO:
        raise ValueError(f"{what} amount must be positive, got {value}")
    return value


class ExpenseManager:

    def __init__(self, coop):
        self.coop = coop

    def get(self, expense_id: str) -> Optional[Expense]:
        return self.coop.state.expenses.get(expense_id)

    def require(self, expense_id: str) -> Expense:
        expense = self.get(expense_id)
        if expense is None:
            raise RecordNotFound("expense", expense_id)
        return expense

    def list(self, category: Optional[ExpenseCategory] = None) -> List[Expense]:
        expenses = list(self.coop.state.expenses.values())
        if category is not None:
            expenses = [e for e in expenses if e.category == category]
        return expenses

    def add(
        self,
        description: str,
        amount: Amount,
        category: ExpenseCategory = ExpenseCategory.OTHER,
        expense_date: Optional[DateLike] = None,
        notes: Optional[str] = None
    ) -> Expense:
        value = _positive(amount, "Expense")
        category = ExpenseCategory(category)

        with self.coop.atomic():
            now = self.coop.clock.now()
            expense = Expense(
                id=str(uuid.uuid4()),
                description=description,
                amount=value,
                category=category,
                date=parse_date(expense_date) if expense_date else now.date(),
                created_at=now,
                notes=notes
            )
            self.coop.state.expenses[expense.id] = expense
            self.coop.ledger.append(TransactionType.EXPENSE, -value, description, reference_id=expense.id)
            self.coop.activity.log(
                ActivityType.EXPENSE_ADD, f"Expense recorded: {description} - {self._fmt(value)}",
                details={"expense": expense.to_dict()}, reference_id=expense.id
            )

        log_action(logger, "info", "Expense recorded", action="expense_added",
                   entity_type="expense", entity_id=expense.id, extra={"amount": str(value)})
        self.coop.notify(NotificationKind.SUCCESS, "Expense recorded", f"{self._fmt(value)} for {description}")
        return expense

    def delete(self, expense_id: str) -> Expense:
        expense = self.require(expense_id)
        with self.coop.atomic():
            del self.coop.state.expenses[expense.id]
            self.coop.ledger.append(
                TransactionType.EXPENSE, expense.amount,
                f"Reversal of expense - {expense.description}", reference_id=expense.id
            )
            self.coop.activity.log(
                ActivityType.EXPENSE_DELETE, f"Expense deleted: {expense.description}",
                details={"expense": expense.to_dict()}, reference_id=expense.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Expense deleted")
        return expense

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self.coop.state.config.currency_symbol)


class RefundManager:

    def __init__(self, coop):
        self.coop = coop

    def get(self, refund_id: str) -> Optional[Refund]:
        return self.coop.state.refunds.get(refund_id)

    def require(self, refund_id: str) -> Refund:
        refund = self.get(refund_id)
        if refund is None:
            raise RecordNotFound("refund", refund_id)
        return refund

    def list(self) -> List[Refund]:
        return list(self.coop.state.refunds.values())

    def for_member(self, member_id: str) -> List[Refund]:
        return [r for r in self.coop.state.refunds.values() if r.member_id == member_id]

    def add(self, member_id: str, reason: str, amount: Amount,
            deposit_date: Optional[DateLike] = None) -> Refund:
        """
        Return money to a member

        Raises:
            MemberNotFound: unknown member
        """
        member = self.coop.members.require(member_id)
        value = _positive(amount, "Refund")

        with self.coop.atomic():
            now = self.coop.clock.now()
            refund = Refund(
                id=str(uuid.uuid4()),
                member_id=member.id,
                member_name=member.name,
                reason=reason,
                amount=value,
                deposit_date=parse_date(deposit_date) if deposit_date else now.date(),
                created_at=now,
                updated_at=now
            )
            self.coop.state.refunds[refund.id] = refund
            self.coop.ledger.append(
                TransactionType.REFUND, -value,
                f"Refund to {member.name}: {reason}", reference_id=member.id
            )
            self.coop.activity.log(
                ActivityType.REFUND_ADD, f"Refund recorded: {member.name} - {self._fmt(value)}",
                details={"refund": refund.to_dict()}, reference_id=refund.id
            )

        log_action(logger, "info", "Refund recorded", action="refund_added",
                   entity_type="refund", entity_id=refund.id,
                   extra={"member_id": member.id, "amount": str(value)})
        self.coop.notify(NotificationKind.SUCCESS, "Refund recorded",
                         f"{self._fmt(value)} returned to {member.name}")
        return refund

    def update(self, refund_id: str, reason: Optional[str] = None,
               deposit_date: Optional[DateLike] = None) -> Refund:
        """Edit descriptive fields; the amount is fixed once recorded"""
        refund = self.require(refund_id)
        with self.coop.atomic():
            before = refund.to_dict()
            if reason is not None:
                refund.reason = reason
            if deposit_date is not None:
                refund.deposit_date = parse_date(deposit_date)
            refund.updated_at = self.coop.clock.now()
            self.coop.activity.log(
                ActivityType.REFUND_EDIT, f"Refund edited: {refund.member_name}",
                details={"old": before, "new": refund.to_dict()}, reference_id=refund.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Refund updated")
        return refund

    def delete(self, refund_id: str) -> Refund:
        refund = self.require(refund_id)
        with self.coop.atomic():
            del self.coop.state.refunds[refund.id]
            self.coop.ledger.append(
                TransactionType.REFUND, refund.amount,
                f"Reversal of refund - {refund.member_name}", reference_id=refund.member_id
            )
            self.coop.activity.log(
                ActivityType.REFUND_DELETE, f"Refund deleted: {refund.member_name}",
                details={"refund": refund.to_dict()}, reference_id=refund.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Refund deleted")
        return refund

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self.coop.state.config.currency_symbol)
