"""
Contribution Module

Monthly member payments: share capital, administrative expense and an
optional late penalty. A contribution counts towards available cash once it
is paid; its `contribution` ledger entry is informational and references the
member.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging
import re
import uuid

from .activity import ActivityType
from .errors import RecordNotFound
from .logging_config import log_action
from .models import Contribution, ContributionStatus, TransactionType
from .money import Amount, ZERO, round_cents, format_amount
from .notifications import NotificationKind

logger = logging.getLogger(__name__)

_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_EDITABLE_FIELDS = ('share_amount', 'expense_amount', 'penalty_amount', 'month', 'status')

# Day of the month a contribution falls due
DUE_DAY = 5


def due_date_for(month: str) -> date:
    year, month_number = month.split("-")
    return date(int(year), int(month_number), DUE_DAY)


class ContributionManager:

    def __init__(self, coop):
        self.coop = coop

    def get(self, contribution_id: str) -> Optional[Contribution]:
        return self.coop.state.contributions.get(contribution_id)

    def require(self, contribution_id: str) -> Contribution:
        contribution = self.get(contribution_id)
        if contribution is None:
            raise RecordNotFound("contribution", contribution_id)
        return contribution

    def for_member(self, member_id: str, year: Optional[int] = None) -> List[Contribution]:
        result = [c for c in self.coop.state.contributions.values() if c.member_id == member_id]
        if year is not None:
            result = [c for c in result if c.month.startswith(f"{year}-")]
        return sorted(result, key=lambda c: c.month)

    def for_month(self, month: str) -> List[Contribution]:
        return [c for c in self.coop.state.contributions.values() if c.month == month]

    def is_late(self, month: str, paid_on: date) -> bool:
        """Paid after the configured penalty day of that month, or in a later month"""
        threshold = self.coop.state.config.penalty_day_threshold
        year, month_number = (int(part) for part in month.split("-"))
        return (paid_on.year, paid_on.month, paid_on.day) > (year, month_number, threshold)

    def add(
        self,
        member_id: str,
        month: str,
        share_amount: Optional[Amount] = None,
        expense_amount: Optional[Amount] = None,
        penalty_amount: Optional[Amount] = None,
        with_penalty: bool = False,
        paid: bool = True
    ) -> Contribution:
        """
        Record a member's contribution for a month

        Args:
            member_id: Contributing member
            month: Period as YYYY-MM
            share_amount: Defaults to the configured monthly share
            expense_amount: Defaults to the configured monthly expense
            penalty_amount: Explicit penalty; overrides with_penalty
            with_penalty: Charge the configured penalty amount
            paid: Record as paid now, otherwise as pending

        Raises:
            MemberNotFound: unknown member
        """
        member = self.coop.members.require(member_id)
        self._check_month(month)
        config = self.coop.state.config

        share = round_cents(config.monthly_share_amount if share_amount is None else share_amount)
        expense = round_cents(config.monthly_expense_amount if expense_amount is None else expense_amount)
        if penalty_amount is not None:
            penalty = round_cents(penalty_amount)
        else:
            penalty = config.penalty_amount if with_penalty else ZERO
        self._check_amounts(share, expense, penalty)

        with self.coop.atomic():
            now = self.coop.clock.now()
            contribution = Contribution(
                id=str(uuid.uuid4()),
                member_id=member.id,
                month=month,
                share_amount=share,
                expense_amount=expense,
                penalty_amount=penalty,
                total_amount=round_cents(share + expense + penalty),
                due_date=due_date_for(month),
                created_at=now
            )
            self.coop.state.contributions[contribution.id] = contribution
            if paid:
                self._settle(contribution)
            self.coop.activity.log(
                ActivityType.CONTRIBUTION_ADD,
                f"Contribution recorded: {member.name} - {month}",
                details={"contribution": contribution.to_dict()},
                reference_id=contribution.id
            )

        log_action(logger, "info", "Contribution recorded", action="contribution_added",
                   entity_type="contribution", entity_id=contribution.id,
                   extra={"member_id": member.id, "month": month, "paid": paid})
        self.coop.notify(
            NotificationKind.SUCCESS,
            "Contribution paid" if paid else "Contribution recorded",
            f"{self._fmt(contribution.total_amount)} from {member.name} for {month}"
        )
        return contribution

    def mark_paid(self, contribution_id: str) -> Contribution:
        contribution = self.require(contribution_id)
        if contribution.is_paid:
            return contribution

        with self.coop.atomic():
            self._settle(contribution)
            self.coop.activity.log(
                ActivityType.CONTRIBUTION_PAY,
                f"Contribution paid: {contribution.month} - {self._fmt(contribution.total_amount)}",
                details={"contribution": contribution.to_dict()},
                reference_id=contribution.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Payment recorded",
                         f"Contribution for {contribution.month} marked as paid")
        return contribution

    def update(self, contribution_id: str, **changes) -> Contribution:
        """
        Edit amounts, month or status. The member's contribution total is
        recomputed from its paid contributions afterwards.
        """
        contribution = self.require(contribution_id)
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update contribution fields: {', '.join(sorted(unknown))}")
        if 'month' in changes:
            self._check_month(changes['month'])

        share = round_cents(changes.get('share_amount', contribution.share_amount))
        expense = round_cents(changes.get('expense_amount', contribution.expense_amount))
        penalty = round_cents(changes.get('penalty_amount', contribution.penalty_amount))
        self._check_amounts(share, expense, penalty)
        status = ContributionStatus(changes.get('status', contribution.status))

        with self.coop.atomic():
            before = contribution.to_dict()
            contribution.share_amount = share
            contribution.expense_amount = expense
            contribution.penalty_amount = penalty
            contribution.total_amount = round_cents(share + expense + penalty)
            if 'month' in changes:
                contribution.month = changes['month']
                contribution.due_date = due_date_for(contribution.month)
            if status == ContributionStatus.PAID and not contribution.is_paid:
                self._settle(contribution)
            else:
                contribution.status = status
            self._refresh_member_totals(contribution.member_id)
            self.coop.activity.log(
                ActivityType.CONTRIBUTION_EDIT,
                f"Contribution edited: {contribution.month}",
                details={"old": before, "new": contribution.to_dict()},
                reference_id=contribution.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Contribution updated")
        return contribution

    def delete(self, contribution_id: str) -> Contribution:
        """
        Remove a contribution. A paid one gets an offsetting `contribution`
        entry; available cash drops because the record itself is gone.
        """
        contribution = self.require(contribution_id)

        with self.coop.atomic():
            del self.coop.state.contributions[contribution.id]
            if contribution.is_paid:
                self.coop.ledger.append(
                    TransactionType.CONTRIBUTION, -contribution.total_amount,
                    f"Reversal of contribution - {contribution.month}",
                    reference_id=contribution.member_id
                )
            self._refresh_member_totals(contribution.member_id)
            self.coop.activity.log(
                ActivityType.CONTRIBUTION_DELETE,
                f"Contribution deleted: {contribution.month}",
                details={"contribution": contribution.to_dict()},
                reference_id=contribution.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Contribution deleted")
        return contribution

    def _settle(self, contribution: Contribution) -> None:
        now = self.coop.clock.now()
        contribution.status = ContributionStatus.PAID
        contribution.paid_date = now.date()
        contribution.paid_at = now
        self.coop.ledger.append(
            TransactionType.CONTRIBUTION, contribution.total_amount,
            f"Contribution - {contribution.month}", reference_id=contribution.member_id
        )
        self._refresh_member_totals(contribution.member_id)

    def _refresh_member_totals(self, member_id: str) -> None:
        """Recompute the member's cached totals from paid contributions"""
        member = self.coop.members.get(member_id)
        if member is None:
            return
        paid = [c for c in self.coop.state.contributions.values()
                if c.member_id == member_id and c.is_paid]
        total = round_cents(sum((c.total_amount for c in paid), ZERO))
        member.total_contributions = total
        member.current_balance = total
        member.updated_at = self.coop.clock.now()

    def _check_month(self, month: str) -> None:
        if not isinstance(month, str) or not _MONTH_PATTERN.match(month):
            raise ValueError(f"Month must be formatted as YYYY-MM, got {month!r}")

    def _check_amounts(self, *amounts: Decimal) -> None:
        if any(amount < ZERO for amount in amounts):
            raise ValueError("Contribution amounts cannot be negative")

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self.coop.state.config.currency_symbol)
