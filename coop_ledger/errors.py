"""
Error Types

Every operation validates its inputs and the current state before mutating
anything, so raising one of these leaves the cooperative untouched.
"""


class CooperativeError(ValueError):
    """Base class for all domain failures"""
    pass


class InvalidLoanTerms(CooperativeError):
    """Non-positive amount or term at quote or approval time"""
    pass


class MemberNotFound(CooperativeError):

    def __init__(self, member_id: str):
        super().__init__(f"Member {member_id} not found")
        self.member_id = member_id


class LoanNotFound(CooperativeError):

    def __init__(self, loan_id: str):
        super().__init__(f"Loan {loan_id} not found")
        self.loan_id = loan_id


class RecordNotFound(CooperativeError):
    """Unknown contribution, expense or refund id"""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind.capitalize()} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidLoanState(CooperativeError):
    """Operation not permitted in the loan's current status"""
    pass


class ExcessivePayment(CooperativeError):
    """Prepayment larger than the remaining principal"""

    def __init__(self, loan_id: str, amount, remaining):
        super().__init__(
            f"Payment {amount} exceeds remaining principal {remaining} of loan {loan_id}"
        )
        self.loan_id = loan_id
        self.amount = amount
        self.remaining = remaining


class InvalidPaymentAmount(CooperativeError):
    """Negative payment, or zero while principal is still outstanding"""
    pass


class InvalidBackupFormat(CooperativeError):
    """Backup document failed the structure check"""
    pass
