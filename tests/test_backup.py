"""
Test suite for backup export and import
"""

import json
import pytest
from decimal import Decimal
from datetime import date

from coop_ledger.activity import ActivityType
from coop_ledger.backup import (
    BACKUP_VERSION, export_document, export_json, import_document, parse_document
)
from coop_ledger.config import CoopSettings
from coop_ledger.cooperative import Cooperative
from coop_ledger.dates import FixedClock
from coop_ledger.errors import InvalidBackupFormat
from coop_ledger.models import LoanStatus
from coop_ledger.notifications import RecordingNotifier


LEGACY_BACKUP = {
    "config": {
        "monthlyShareAmount": 25,
        "monthlyExpenseAmount": 5,
        "penaltyAmount": 5,
        "penaltyDayThreshold": 3,
        "monthlyInterestRate": 1,
        "transferFee": 0.41,
        "retentionRate": 1,
        "currencySymbol": "$",
        "currencyCode": "USD",
        "openingBalance": 0
    },
    "members": [{
        "id": "m1",
        "name": "Rosa Díaz",
        "phone": "555-0199",
        "joinDate": "2023-05-01",
        "status": "active",
        "totalContributions": 30,
        "currentBalance": 30,
        "createdAt": "2023-05-01T10:00:00.000Z",
        "updatedAt": "2023-05-01T10:00:00.000Z"
    }],
    "loans": [],
    "contributions": [{
        "id": "c1",
        "memberId": "m1",
        "month": "2023-05",
        "shareAmount": 25,
        "expenseAmount": 5,
        "penaltyAmount": 0,
        "totalAmount": 30,
        "dueDate": "2023-05-05",
        "paidDate": "2023-05-02",
        "status": "paid",
        "createdAt": "2023-05-02T10:00:00.000Z"
    }],
    "transactions": [{
        "id": "t1",
        "type": "manual_adjustment",
        "amount": 100,
        "description": "Opening cash",
        "date": "2023-05-01",
        "createdAt": "2023-05-01T10:00:00.000Z"
    }],
    "exportDate": "2023-06-01T10:00:00.000Z",
    "version": "1.0"
}


def fresh_cooperative():
    return Cooperative(clock=FixedClock("2024-06-01"), notify=RecordingNotifier(),
                       settings=CoopSettings())


class TestExport:

    def test_export_contains_every_collection(self, coop, member):
        coop.contributions.add(member.id, "2024-01")
        document = export_document(coop)

        assert document["version"] == BACKUP_VERSION
        assert document["export_date"].startswith("2024-01-01")
        for name in ("config", "members", "loans", "contributions", "expenses",
                     "transactions", "refunds", "activities", "cashbox"):
            assert name in document

    def test_export_json_is_parseable(self, coop, member):
        assert json.loads(export_json(coop))["members"][0]["name"] == "Ana Torres"


class TestImport:
    """Test restoring a cooperative from a backup"""

    def test_round_trip(self, coop, member):
        coop.contributions.add(member.id, "2024-01")
        loan = coop.loans.approve(member.id, 1000, 1, 12, date(2024, 1, 1), retention_paid=True)
        coop.loans.pay_installment(loan.id, 1)

        target = fresh_cooperative()
        import_document(target, export_json(coop))

        assert target.available_cash() == coop.available_cash()
        assert target.loans.require(loan.id).to_dict() == loan.to_dict()
        assert target.members.require(member.id).total_contributions == Decimal('30.00')
        assert target.activity.by_type(ActivityType.DATA_IMPORT)

    def test_legacy_camel_case_backup(self):
        target = fresh_cooperative()
        import_document(target, LEGACY_BACKUP)

        member = target.members.require("m1")
        assert member.join_date == date(2023, 5, 1)
        assert member.total_contributions == Decimal('30')
        assert target.config.transfer_fee == Decimal('0.41')
        assert target.contributions.require("c1").member_id == "m1"
        assert target.available_cash() == Decimal('130.00')

    def test_rejects_invalid_json(self):
        with pytest.raises(InvalidBackupFormat):
            parse_document("{not json")

    def test_rejects_missing_arrays(self):
        with pytest.raises(InvalidBackupFormat):
            parse_document({"config": {}, "members": []})
        with pytest.raises(InvalidBackupFormat):
            parse_document({"config": {}, "members": [], "loans": [], "contributions": {}})
        with pytest.raises(InvalidBackupFormat):
            parse_document([])

    def test_rejects_invalid_records(self):
        document = {"config": {}, "members": [{"id": "m1"}], "loans": [], "contributions": []}
        with pytest.raises(InvalidBackupFormat):
            parse_document(document)

    def test_failed_import_keeps_existing_data(self, coop, member):
        with pytest.raises(InvalidBackupFormat):
            import_document(coop, {"config": {}, "members": "nope", "loans": [], "contributions": []})
        assert coop.members.require(member.id) is member

    def test_imported_loan_status(self, coop, member):
        loan = coop.loans.approve(member.id, 500, 1, 6, date(2024, 1, 1))
        target = fresh_cooperative()
        import_document(target, export_document(coop))
        assert target.loans.require(loan.id).status == LoanStatus.PENDING_RETENTION
