"""
Cooperative State Module

The in-memory collections owned by one cooperative, with conversion to and
from the persisted whole-collection form.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from .activity import ActivityEntry
from .config import CooperativeConfig
from .models import Member, Loan, Contribution, Expense, Refund, Transaction
from .money import to_decimal


@dataclass
class CooperativeState:
    """All mutable data of a cooperative; keyed collections keep insertion order"""
    config: CooperativeConfig = field(default_factory=CooperativeConfig)
    members: Dict[str, Member] = field(default_factory=dict)
    loans: Dict[str, Loan] = field(default_factory=dict)
    contributions: Dict[str, Contribution] = field(default_factory=dict)
    expenses: Dict[str, Expense] = field(default_factory=dict)
    refunds: Dict[str, Refund] = field(default_factory=dict)
    transactions: List[Transaction] = field(default_factory=list)
    activities: List[ActivityEntry] = field(default_factory=list)
    cashbox: Decimal = Decimal('0')

    def snapshot(self) -> 'CooperativeState':
        return deepcopy(self)

    def restore(self, snapshot: 'CooperativeState') -> None:
        """Put every collection back to the snapshot's content"""
        self.config = snapshot.config
        self.members = snapshot.members
        self.loans = snapshot.loans
        self.contributions = snapshot.contributions
        self.expenses = snapshot.expenses
        self.refunds = snapshot.refunds
        self.transactions = snapshot.transactions
        self.activities = snapshot.activities
        self.cashbox = snapshot.cashbox

    def to_collections(self) -> Dict[str, Any]:
        """Persisted form, one entry per logical collection"""
        return {
            "config": self.config.to_dict(),
            "members": [m.to_dict() for m in self.members.values()],
            "loans": [l.to_dict() for l in self.loans.values()],
            "contributions": [c.to_dict() for c in self.contributions.values()],
            "expenses": [e.to_dict() for e in self.expenses.values()],
            "transactions": [t.to_dict() for t in self.transactions],
            "refunds": [r.to_dict() for r in self.refunds.values()],
            "activities": [a.to_dict() for a in self.activities],
            "cashbox": str(self.cashbox),
        }

    @classmethod
    def from_collections(cls, data: Dict[str, Any],
                         default_config: CooperativeConfig = None) -> 'CooperativeState':
        """Rebuild state; missing collections start empty"""
        config_data = data.get("config")
        if config_data:
            config = CooperativeConfig.from_dict(config_data)
        else:
            config = default_config or CooperativeConfig()

        def keyed(name, record_type):
            records = (record_type.from_dict(item) for item in data.get(name) or [])
            return {record.id: record for record in records}

        return cls(
            config=config,
            members=keyed("members", Member),
            loans=keyed("loans", Loan),
            contributions=keyed("contributions", Contribution),
            expenses=keyed("expenses", Expense),
            refunds=keyed("refunds", Refund),
            transactions=[Transaction.from_dict(t) for t in data.get("transactions") or []],
            activities=[ActivityEntry.from_dict(a) for a in data.get("activities") or []],
            cashbox=to_decimal(data.get("cashbox") or 0),
        )
