"""
Activity Log Module

Chronological record of every state change made through the cooperative.
Entries are appended by the operation that made the change and stored in
the `activities` collection.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .dates import Clock
from .models import Record, encode_value


class ActivityType(Enum):
    """Types of logged activities"""
    # Member events
    MEMBER_ADD = "member_add"
    MEMBER_EDIT = "member_edit"
    MEMBER_DELETE = "member_delete"
    MEMBER_INACTIVE = "member_inactive"

    # Contribution events
    CONTRIBUTION_ADD = "contribution_add"
    CONTRIBUTION_PAY = "contribution_pay"
    CONTRIBUTION_EDIT = "contribution_edit"
    CONTRIBUTION_DELETE = "contribution_delete"

    # Loan events
    LOAN_ADD = "loan_add"
    LOAN_PAY = "loan_pay"
    LOAN_RETENTION_PAY = "loan_retention_pay"
    LOAN_REFINANCE = "loan_refinance"
    LOAN_CANCEL = "loan_cancel"
    LOAN_DELETE = "loan_delete"

    # Expense and refund events
    EXPENSE_ADD = "expense_add"
    EXPENSE_DELETE = "expense_delete"
    REFUND_ADD = "refund_add"
    REFUND_EDIT = "refund_edit"
    REFUND_DELETE = "refund_delete"

    # System events
    CONFIG_UPDATE = "config_update"
    CASHBOX_ADJUST = "cashbox_adjust"
    ANNUAL_CLOSING = "annual_closing"
    DATA_CLEAR = "data_clear"
    DATA_IMPORT = "data_import"


@dataclass
class ActivityEntry(Record):
    id: str
    type: ActivityType
    description: str
    timestamp: datetime
    details: Optional[str] = None  # JSON document
    reference_id: Optional[str] = None

    _datetimes = ('timestamp',)
    _enums = {'type': ActivityType}

    def details_dict(self) -> Dict[str, Any]:
        return json.loads(self.details) if self.details else {}


class ActivityLog:
    """Appends activity entries to the cooperative state"""

    def __init__(self, state, clock: Clock):
        self.state = state
        self.clock = clock

    def log(
        self,
        activity_type: ActivityType,
        description: str,
        details: Optional[Dict[str, Any]] = None,
        reference_id: Optional[str] = None
    ) -> ActivityEntry:
        """
        Record an activity

        Args:
            activity_type: What happened
            description: Human readable summary
            details: Additional data; Decimals, dates and enums are converted
            reference_id: ID of the affected record

        Returns:
            Created ActivityEntry
        """
        entry = ActivityEntry(
            id=str(uuid.uuid4()),
            type=activity_type,
            description=description,
            timestamp=self.clock.now(),
            details=json.dumps(encode_value(details), sort_keys=True) if details else None,
            reference_id=reference_id
        )
        self.state.activities.append(entry)
        return entry

    def recent(self, limit: Optional[int] = None) -> List[ActivityEntry]:
        """Most recent first"""
        entries = sorted(self.state.activities, key=lambda e: e.timestamp, reverse=True)
        return entries[:limit] if limit else entries

    def for_reference(self, reference_id: str) -> List[ActivityEntry]:
        return [e for e in self.state.activities if e.reference_id == reference_id]

    def by_type(self, activity_type: ActivityType) -> List[ActivityEntry]:
        return [e for e in self.state.activities if e.type == activity_type]
