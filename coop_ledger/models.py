"""
Data Model Module

Records held in the cooperative's collections. Every record converts to and
from a JSON-friendly dictionary: Decimals as strings, dates as ISO strings,
enums as their values.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .dates import parse_date, parse_datetime
from .money import to_decimal


class MemberStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ContributionStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    LATE = "late"
    PENALTY = "penalty"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING_RETENTION = "pending_retention"  # Approved, retention not collected
    ACTIVE = "active"                        # Accepting payments
    PAID = "paid"                            # Remaining principal settled
    REFINANCED = "refinanced"                # Replaced by a successor loan
    CANCELLED = "cancelled"


class InstallmentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    LATE = "late"
    PENALTY = "penalty"
    PARTIAL = "partial"


class TransactionType(Enum):
    """Cash ledger entry kinds"""
    CONTRIBUTION = "contribution"
    LOAN_PAYMENT = "loan_payment"
    PENALTY = "penalty"
    RETENTION = "retention"
    LOAN_APPROVAL = "loan_approval"
    LOAN_CANCEL = "loan_cancel"
    EXPENSE = "expense"
    REFUND = "refund"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class ExpenseCategory(Enum):
    ADMINISTRATIVE = "administrative"
    MAINTENANCE = "maintenance"
    SERVICES = "services"
    SUPPLIES = "supplies"
    OTHER = "other"


def encode_value(value: Any) -> Any:
    """Convert a value to its JSON-friendly form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [encode_value(v) for v in value]
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    return value


class Record:
    """
    Serialization shared by all records.

    Subclasses list which fields hold Decimals, dates, datetimes and enums so
    from_dict() can rebuild them.
    """
    _decimals: tuple = ()
    _dates: tuple = ()
    _datetimes: tuple = ('created_at',)
    _enums: dict = {}

    def to_dict(self) -> Dict[str, Any]:
        return {k: encode_value(v) for k, v in asdict(self).items()}

    @classmethod
    def _decode(cls, key: str, value: Any) -> Any:
        if value is None:
            return None
        if key in cls._decimals:
            return to_decimal(value)
        if key in cls._dates:
            return parse_date(value)
        if key in cls._datetimes:
            return parse_datetime(value)
        if key in cls._enums:
            return cls._enums[key](value)
        return value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: cls._decode(k, v) for k, v in data.items() if k in known})


@dataclass
class Member(Record):
    id: str
    name: str
    phone: str
    join_date: date
    created_at: datetime
    updated_at: datetime
    status: MemberStatus = MemberStatus.ACTIVE
    total_contributions: Decimal = Decimal('0')  # Cache of paid contribution totals
    current_balance: Decimal = Decimal('0')
    notes: Optional[str] = None

    _decimals = ('total_contributions', 'current_balance')
    _dates = ('join_date',)
    _datetimes = ('created_at', 'updated_at')
    _enums = {'status': MemberStatus}

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


@dataclass
class Contribution(Record):
    """One member's monthly payment of share, administrative expense and penalty"""
    id: str
    member_id: str
    month: str  # YYYY-MM
    share_amount: Decimal
    expense_amount: Decimal
    penalty_amount: Decimal
    total_amount: Decimal
    due_date: date
    created_at: datetime
    status: ContributionStatus = ContributionStatus.PENDING
    paid_date: Optional[date] = None
    paid_at: Optional[datetime] = None  # Instant the payment was recorded

    _decimals = ('share_amount', 'expense_amount', 'penalty_amount', 'total_amount')
    _dates = ('due_date', 'paid_date')
    _datetimes = ('created_at', 'paid_at')
    _enums = {'status': ContributionStatus}

    @property
    def is_paid(self) -> bool:
        return self.status == ContributionStatus.PAID

    @property
    def savings_amount(self) -> Decimal:
        return self.share_amount + self.expense_amount

    @property
    def cash_amount(self) -> Decimal:
        return self.share_amount + self.expense_amount + self.penalty_amount


@dataclass
class Expense(Record):
    id: str
    description: str
    amount: Decimal
    category: ExpenseCategory
    date: date
    created_at: datetime
    notes: Optional[str] = None

    _decimals = ('amount',)
    _dates = ('date',)
    _enums = {'category': ExpenseCategory}


@dataclass
class Refund(Record):
    """Money returned to a member who leaves the cooperative"""
    id: str
    member_id: str
    member_name: str
    reason: str
    amount: Decimal
    deposit_date: date
    created_at: datetime
    updated_at: datetime

    _decimals = ('amount',)
    _dates = ('deposit_date',)
    _datetimes = ('created_at', 'updated_at')


@dataclass(frozen=True)
class Transaction(Record):
    """Immutable cash ledger entry; the amount is signed"""
    id: str
    type: TransactionType
    amount: Decimal
    description: str
    date: date
    created_at: datetime
    reference_id: Optional[str] = None

    _decimals = ('amount',)
    _dates = ('date',)
    _enums = {'type': TransactionType}


@dataclass
class AmortizationEntry(Record):
    """Single row of a loan's repayment schedule"""
    installment_number: int
    due_date: date
    principal: Decimal
    interest: Decimal
    transfer_fee: Decimal
    payment: Decimal
    balance: Decimal
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: Optional[date] = None

    _decimals = ('principal', 'interest', 'transfer_fee', 'payment', 'balance')
    _dates = ('due_date', 'paid_date')
    _datetimes = ()
    _enums = {'status': InstallmentStatus}

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID


@dataclass
class Loan(Record):
    """
    Loan with its frozen quote and running balances.

    The schedule, monthly payment and totals are fixed at approval; later
    configuration changes never touch them.
    """
    id: str
    member_id: str
    member_name: str
    amount: Decimal
    monthly_interest_rate: Decimal  # Percent per month
    term_months: int
    start_date: date
    end_date: date
    transfer_fee: Decimal
    monthly_payment: Decimal
    total_interest: Decimal
    total_amount: Decimal
    retention_amount: Decimal
    created_at: datetime
    schedule: List[AmortizationEntry] = field(default_factory=list)
    paid_principal: Decimal = Decimal('0')
    remaining_principal: Decimal = Decimal('0')
    paid_installments: int = 0
    total_installments: int = 0
    retention_paid: bool = False
    status: LoanStatus = LoanStatus.PENDING_RETENTION
    refinanced_from_id: Optional[str] = None
    notes: Optional[str] = None

    _decimals = (
        'amount', 'monthly_interest_rate', 'transfer_fee', 'monthly_payment',
        'total_interest', 'total_amount', 'retention_amount',
        'paid_principal', 'remaining_principal'
    )
    _dates = ('start_date', 'end_date')
    _enums = {'status': LoanStatus}

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def installment(self, number: int) -> Optional[AmortizationEntry]:
        for entry in self.schedule:
            if entry.installment_number == number:
                return entry
        return None

    def unpaid_installments(self) -> List[AmortizationEntry]:
        return [e for e in self.schedule if not e.is_paid]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        schedule = [AmortizationEntry.from_dict(e) for e in data.pop('schedule', [])]
        loan = super().from_dict(data)
        loan.schedule = schedule
        return loan
