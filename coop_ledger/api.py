"""
FastAPI REST API Module

Provides REST API endpoints for cooperative operations: members,
contributions, loans (quote, approval, retention, installments,
prepayment, refinancing, deletion), expenses, refunds, the cash ledger,
reports and backups. Runs on port 8090 by default.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .backup import export_document, import_document
from .config import CoopSettings, get_settings
from .cooperative import Cooperative
from .errors import CooperativeError, MemberNotFound, LoanNotFound, RecordNotFound
from .logging_config import setup_logging
from .models import LoanStatus, MemberStatus, ExpenseCategory, TransactionType
from .reports import dashboard_stats, member_statements
from .storage import InMemoryStore, SQLiteStore


# Pydantic models for API requests
class CreateMemberRequest(BaseModel):
    name: str
    phone: str = ""
    join_date: Optional[str] = None  # ISO date string
    notes: Optional[str] = None


class UpdateMemberRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    join_date: Optional[str] = None
    notes: Optional[str] = None


class MemberStatusRequest(BaseModel):
    status: str = Field(..., description="active, inactive or suspended")


class QuoteRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    term_months: int
    monthly_interest_rate: Optional[str] = None  # Percent, defaults to configuration
    start_date: Optional[str] = None
    transfer_fee: Optional[str] = None


class CreateLoanRequest(BaseModel):
    member_id: str
    amount: str = Field(..., description="Decimal amount as string")
    monthly_interest_rate: Optional[str] = None
    term_months: int
    start_date: Optional[str] = None
    retention_paid: bool = False
    retention_amount: Optional[str] = None
    notes: Optional[str] = None


class PrepayRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")


class RefinanceRequest(BaseModel):
    term_months: int
    notes: Optional[str] = None


class CreateContributionRequest(BaseModel):
    member_id: str
    month: str = Field(..., description="YYYY-MM")
    share_amount: Optional[str] = None
    expense_amount: Optional[str] = None
    penalty_amount: Optional[str] = None
    with_penalty: bool = False
    paid: bool = True


class UpdateContributionRequest(BaseModel):
    month: Optional[str] = None
    share_amount: Optional[str] = None
    expense_amount: Optional[str] = None
    penalty_amount: Optional[str] = None
    status: Optional[str] = None


class CreateExpenseRequest(BaseModel):
    description: str
    amount: str
    category: str = "other"
    date: Optional[str] = None
    notes: Optional[str] = None


class CreateRefundRequest(BaseModel):
    member_id: str
    reason: str
    amount: str
    deposit_date: Optional[str] = None


class UpdateRefundRequest(BaseModel):
    reason: Optional[str] = None
    deposit_date: Optional[str] = None


class CashAdjustmentRequest(BaseModel):
    amount: str
    description: Optional[str] = None


class CashboxRequest(BaseModel):
    value: str


def _provided(model: BaseModel) -> Dict[str, Any]:
    """Fields the client actually sent"""
    return {k: v for k, v in model.model_dump(exclude_unset=True).items() if v is not None}


# Cooperative Context
class CooperativeSystem:
    """Cooperative wired to the configured store"""

    def __init__(self, settings: Optional[CoopSettings] = None, use_sqlite: Optional[bool] = None):
        self.settings = settings or get_settings()
        if use_sqlite is None:
            use_sqlite = self.settings.storage_backend == "sqlite"

        if use_sqlite:
            self.store = SQLiteStore(self.settings.database_path)
        else:
            self.store = InMemoryStore()

        self.cooperative = Cooperative.open(self.store, settings=self.settings)


_system: Optional[CooperativeSystem] = None


def get_system() -> CooperativeSystem:
    global _system
    if _system is None:
        _system = CooperativeSystem()
    return _system


def get_cooperative(system: CooperativeSystem = Depends(get_system)) -> Cooperative:
    return system.cooperative


# Create FastAPI app
app = FastAPI(
    title="Cooperative Ledger API",
    description="Savings-and-credit cooperative: loans, contributions and cash ledger",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CooperativeError)
async def cooperative_error_handler(request: Request, exc: CooperativeError):
    code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (MemberNotFound, LoanNotFound, RecordNotFound)):
        code = status.HTTP_404_NOT_FOUND
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "error": "ValueError"}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/")
async def root():
    """Root endpoint with system information"""
    return {
        "system": "Cooperative Ledger",
        "version": __version__,
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "members": "/members",
            "contributions": "/contributions",
            "loans": "/loans",
            "expenses": "/expenses",
            "refunds": "/refunds",
            "cash": "/cash",
            "reports": "/reports",
            "backup": "/backup"
        }
    }


# Member Endpoints
@app.post("/members", status_code=status.HTTP_201_CREATED)
def create_member(request: CreateMemberRequest, coop: Cooperative = Depends(get_cooperative)):
    """Register a new member"""
    try:
        member = coop.members.add(request.name, request.phone, request.join_date, request.notes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return member.to_dict()


@app.get("/members")
def list_members(member_status: Optional[str] = None, coop: Cooperative = Depends(get_cooperative)):
    try:
        wanted = MemberStatus(member_status) if member_status else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"members": [m.to_dict() for m in coop.members.list(wanted)]}


@app.get("/members/{member_id}")
def get_member(member_id: str, coop: Cooperative = Depends(get_cooperative)):
    member = coop.members.get(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member.to_dict()


@app.put("/members/{member_id}")
def update_member(member_id: str, request: UpdateMemberRequest,
                  coop: Cooperative = Depends(get_cooperative)):
    return coop.members.update(member_id, **_provided(request)).to_dict()


@app.put("/members/{member_id}/status")
def set_member_status(member_id: str, request: MemberStatusRequest,
                      coop: Cooperative = Depends(get_cooperative)):
    try:
        member_status = MemberStatus(request.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return coop.members.set_status(member_id, member_status).to_dict()


@app.delete("/members/{member_id}")
def delete_member(member_id: str, coop: Cooperative = Depends(get_cooperative)):
    member = coop.members.delete(member_id)
    return {"member_id": member.id, "message": "Member deleted"}


@app.get("/members/{member_id}/contributions")
def get_member_contributions(member_id: str, year: Optional[int] = None,
                             coop: Cooperative = Depends(get_cooperative)):
    coop.members.require(member_id)
    contributions = coop.contributions.for_member(member_id, year)
    return {"contributions": [c.to_dict() for c in contributions]}


@app.get("/members/{member_id}/loans")
def get_member_loans(member_id: str, coop: Cooperative = Depends(get_cooperative)):
    coop.members.require(member_id)
    return {"loans": [loan.to_dict() for loan in coop.loans.for_member(member_id)]}


# Loan Endpoints
@app.post("/loans/quote")
def quote_loan(request: QuoteRequest, coop: Cooperative = Depends(get_cooperative)):
    """Preview a loan without recording anything"""
    quote = coop.loans.quote(
        amount=request.amount,
        term_months=request.term_months,
        monthly_interest_rate=request.monthly_interest_rate,
        start_date=request.start_date,
        transfer_fee=request.transfer_fee
    )
    return quote.to_dict()


@app.post("/loans", status_code=status.HTTP_201_CREATED)
def create_loan(request: CreateLoanRequest, coop: Cooperative = Depends(get_cooperative)):
    """Approve and disburse a loan"""
    loan = coop.loans.approve(
        member_id=request.member_id,
        amount=request.amount,
        monthly_interest_rate=request.monthly_interest_rate or coop.config.monthly_interest_rate,
        term_months=request.term_months,
        start_date=request.start_date or coop.clock.today(),
        retention_paid=request.retention_paid,
        retention_amount=request.retention_amount,
        notes=request.notes
    )
    return loan.to_dict()


@app.get("/loans")
def list_loans(loan_status: Optional[str] = None, coop: Cooperative = Depends(get_cooperative)):
    try:
        wanted = LoanStatus(loan_status) if loan_status else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"loans": [loan.to_dict() for loan in coop.loans.list(wanted)]}


@app.get("/loans/{loan_id}")
def get_loan(loan_id: str, coop: Cooperative = Depends(get_cooperative)):
    loan = coop.loans.get(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan.to_dict()


@app.get("/loans/{loan_id}/schedule")
def get_loan_schedule(loan_id: str, coop: Cooperative = Depends(get_cooperative)):
    loan = coop.loans.require(loan_id)
    return {"loan_id": loan.id, "schedule": [entry.to_dict() for entry in loan.schedule]}


@app.post("/loans/{loan_id}/retention")
def pay_loan_retention(loan_id: str, coop: Cooperative = Depends(get_cooperative)):
    return coop.loans.pay_retention(loan_id).to_dict()


@app.post("/loans/{loan_id}/installments/{installment_number}")
def pay_loan_installment(loan_id: str, installment_number: int,
                         coop: Cooperative = Depends(get_cooperative)):
    return coop.loans.pay_installment(loan_id, installment_number).to_dict()


@app.post("/loans/{loan_id}/prepay")
def prepay_loan(loan_id: str, request: PrepayRequest, coop: Cooperative = Depends(get_cooperative)):
    return coop.loans.prepay(loan_id, request.amount).to_dict()


@app.post("/loans/{loan_id}/refinance", status_code=status.HTTP_201_CREATED)
def refinance_loan(loan_id: str, request: RefinanceRequest, coop: Cooperative = Depends(get_cooperative)):
    return coop.loans.refinance(loan_id, request.term_months, request.notes).to_dict()


@app.delete("/loans/{loan_id}")
def delete_loan(loan_id: str, coop: Cooperative = Depends(get_cooperative)):
    loan = coop.loans.delete(loan_id)
    return {
        "loan_id": loan.id,
        "available_cash": str(coop.available_cash()),
        "message": "Loan deleted"
    }


# Contribution Endpoints
@app.post("/contributions", status_code=status.HTTP_201_CREATED)
def create_contribution(request: CreateContributionRequest, coop: Cooperative = Depends(get_cooperative)):
    contribution = coop.contributions.add(
        member_id=request.member_id,
        month=request.month,
        share_amount=request.share_amount,
        expense_amount=request.expense_amount,
        penalty_amount=request.penalty_amount,
        with_penalty=request.with_penalty,
        paid=request.paid
    )
    return contribution.to_dict()


@app.post("/contributions/{contribution_id}/pay")
def pay_contribution(contribution_id: str, coop: Cooperative = Depends(get_cooperative)):
    return coop.contributions.mark_paid(contribution_id).to_dict()


@app.put("/contributions/{contribution_id}")
def update_contribution(contribution_id: str, request: UpdateContributionRequest,
                        coop: Cooperative = Depends(get_cooperative)):
    return coop.contributions.update(contribution_id, **_provided(request)).to_dict()


@app.delete("/contributions/{contribution_id}")
def delete_contribution(contribution_id: str, coop: Cooperative = Depends(get_cooperative)):
    contribution = coop.contributions.delete(contribution_id)
    return {"contribution_id": contribution.id, "message": "Contribution deleted"}


# Expense and Refund Endpoints
@app.post("/expenses", status_code=status.HTTP_201_CREATED)
def create_expense(request: CreateExpenseRequest, coop: Cooperative = Depends(get_cooperative)):
    try:
        expense = coop.expenses.add(
            description=request.description,
            amount=request.amount,
            category=ExpenseCategory(request.category),
            expense_date=request.date,
            notes=request.notes
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return expense.to_dict()


@app.get("/expenses")
def list_expenses(coop: Cooperative = Depends(get_cooperative)):
    return {"expenses": [e.to_dict() for e in coop.expenses.list()]}


@app.delete("/expenses/{expense_id}")
def delete_expense(expense_id: str, coop: Cooperative = Depends(get_cooperative)):
    expense = coop.expenses.delete(expense_id)
    return {"expense_id": expense.id, "message": "Expense deleted"}


@app.post("/refunds", status_code=status.HTTP_201_CREATED)
def create_refund(request: CreateRefundRequest, coop: Cooperative = Depends(get_cooperative)):
    refund = coop.refunds.add(request.member_id, request.reason, request.amount, request.deposit_date)
    return refund.to_dict()


@app.get("/refunds")
def list_refunds(coop: Cooperative = Depends(get_cooperative)):
    return {"refunds": [r.to_dict() for r in coop.refunds.list()]}


@app.put("/refunds/{refund_id}")
def update_refund(refund_id: str, request: UpdateRefundRequest, coop: Cooperative = Depends(get_cooperative)):
    return coop.refunds.update(refund_id, request.reason, request.deposit_date).to_dict()


@app.delete("/refunds/{refund_id}")
def delete_refund(refund_id: str, coop: Cooperative = Depends(get_cooperative)):
    refund = coop.refunds.delete(refund_id)
    return {"refund_id": refund.id, "message": "Refund deleted"}


# Cash Endpoints
@app.get("/cash")
def get_cash(coop: Cooperative = Depends(get_cooperative)):
    return {
        "available_cash": str(coop.available_cash()),
        "cashbox": str(coop.cashbox),
        "opening_balance": str(coop.config.opening_balance),
        "currency": coop.config.currency_code
    }


@app.post("/cash/adjust")
def adjust_cash(request: CashAdjustmentRequest, coop: Cooperative = Depends(get_cooperative)):
    try:
        transaction = coop.adjust_cashbox(request.amount, request.description)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "transaction": transaction.to_dict() if transaction else None,
        "cashbox": str(coop.cashbox),
        "available_cash": str(coop.available_cash())
    }


@app.put("/cash/cashbox")
def set_cashbox(request: CashboxRequest, coop: Cooperative = Depends(get_cooperative)):
    try:
        value = coop.set_cashbox(request.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"cashbox": str(value)}


@app.post("/cash/closing")
def annual_closing(coop: Cooperative = Depends(get_cooperative)):
    balance = coop.annual_closing()
    return {"opening_balance": str(balance), "period_start": coop.config.period_start.isoformat()}


@app.get("/transactions")
def list_transactions(transaction_type: Optional[str] = None, reference_id: Optional[str] = None,
                      coop: Cooperative = Depends(get_cooperative)):
    try:
        wanted = TransactionType(transaction_type) if transaction_type else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"transactions": [t.to_dict() for t in coop.ledger.find(wanted, reference_id)]}


# Configuration Endpoints
@app.get("/config")
def get_config(coop: Cooperative = Depends(get_cooperative)):
    return coop.config.to_dict()


@app.put("/config")
def update_config(changes: Dict[str, Any], coop: Cooperative = Depends(get_cooperative)):
    return coop.update_config(**changes).to_dict()


# Report Endpoints
@app.get("/reports/dashboard")
def get_dashboard(coop: Cooperative = Depends(get_cooperative)):
    return dashboard_stats(coop).to_dict()


@app.get("/reports/members")
def get_member_statements(coop: Cooperative = Depends(get_cooperative)):
    return member_statements(coop).to_dict()


@app.get("/activities")
def list_activities(limit: int = 50, coop: Cooperative = Depends(get_cooperative)):
    return {"activities": [a.to_dict() for a in coop.activity.recent(limit)]}


# Backup Endpoints
@app.get("/backup")
def export_backup(coop: Cooperative = Depends(get_cooperative)):
    return export_document(coop)


@app.post("/backup")
def import_backup(document: Dict[str, Any], coop: Cooperative = Depends(get_cooperative)):
    import_document(coop, document)
    return {
        "members": len(coop.state.members),
        "loans": len(coop.state.loans),
        "message": "Backup imported"
    }


# Run server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_settings()
    setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    uvicorn.run(
        "coop_ledger.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level=settings.log_level.lower()
    )
