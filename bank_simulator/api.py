"""
FastAPI REST API Module

HTTP presentation layer over the simulator: customers, accounts, deposits,
withdrawals and transfers, bills, standing orders, external SEPA/SWIFT
transfers and the simulated clock. Every endpoint goes through the public
manager/processor/engine operations; nothing here touches entity fields
directly. Runs on port 8090 by default.
"""

from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Optional, Any

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .accounts import AccountStatus
from .bills import BillStatus
from .config import SimulatorConfig, get_config
from .currency import to_decimal
from .demo import load_demo_data
from .errors import BankingError, EntityNotFoundError
from .gateway import RecipientDetails, TransferGateway, TransferMechanism
from .logging_config import get_logger
from .persistence import (
    BankRepository, account_to_dict, bill_to_dict, customer_to_dict,
    standing_order_to_dict, transaction_to_dict
)
from .simulation import SimulationSummary, TimeSimulationEngine
from .storage import InMemoryStorage, SQLiteStorage

logger = get_logger("banksim.api")


# Pydantic models for API requests
class RegisterIndividualRequest(BaseModel):
    username: str
    full_name: str
    address: str = ""
    phone: str = ""
    tax_id: str = ""


class RegisterBusinessRequest(BaseModel):
    username: str
    business_name: str
    vat_number: str
    phone: str = ""


class OpenAccountRequest(BaseModel):
    owner_id: str
    account_type: str = Field("personal", description="personal or business")
    initial_balance: str = Field("0", description="Decimal amount as string")
    interest_rate: Optional[str] = None
    maintenance_fee: Optional[str] = None


class AccountStatusRequest(BaseModel):
    status: str = Field(..., description="active, inactive, frozen or closed")
    reason: str = ""


class CoOwnerRequest(BaseModel):
    customer_id: str


class DepositRequest(BaseModel):
    iban: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class WithdrawRequest(BaseModel):
    iban: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class TransferRequest(BaseModel):
    from_iban: str
    to_iban: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class ExternalTransferRequest(BaseModel):
    iban: str
    amount: str = Field(..., description="Decimal amount as string")
    mechanism: str = Field(..., description="sepa or swift")
    recipient_account: str
    recipient_name: str = "Beneficiary"
    bank_code: str = "ETHNGRAA"
    bank_name: str = "National Bank of Greece"
    address: str = "Unknown Address"
    country: str = "XX"
    charges: str = "SHA"
    description: str = ""


class CreateBillRequest(BaseModel):
    owner_id: str
    issuer_id: str
    provider_name: str
    amount: str = Field(..., description="Decimal amount as string")
    due_date: date
    reference_code: Optional[str] = None


class PayBillRequest(BaseModel):
    iban: str


class RefundRequest(BaseModel):
    previous_status: str = Field("unpaid", description="Status the bill returns to")


class TransferOrderRequest(BaseModel):
    owner_id: str
    source_iban: str
    destination_iban: str
    amount: str = Field(..., description="Decimal amount as string")
    frequency_months: int = 1
    execution_day: int
    description: str = ""


class BillPaymentOrderRequest(BaseModel):
    owner_id: str
    source_iban: str
    reference_code: Optional[str] = None
    provider_name: Optional[str] = None
    amount: Optional[str] = None
    frequency_months: int = 1
    execution_day: int


class SimulateRequest(BaseModel):
    target_date: date


class AdvanceRequest(BaseModel):
    days: int = Field(1, ge=0)


class ResetDateRequest(BaseModel):
    new_date: date


class BankSystem:
    """Simulator wired to its storage, repository and engine"""

    def __init__(
        self,
        use_sqlite: bool = True,
        config: Optional[SimulatorConfig] = None,
        gateway: Optional[TransferGateway] = None,
        load_demo: bool = False
    ):
        self.config = config or get_config()
        if use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.repository = BankRepository(self.storage)
        empty = self.repository.is_empty()
        self.context = self.repository.load_context(config=self.config, gateway=gateway)
        self.engine = TimeSimulationEngine(self.context, self.repository)
        logger.info(f"Bank state loaded, simulated date {self.context.current_date.isoformat()}")

        if empty and load_demo:
            load_demo_data(self.context)
        if empty:
            self.persist()

    def persist(self) -> None:
        self.repository.save_context(self.context)


# Global simulator instance, created on first use
bank_system: Optional[BankSystem] = None


# Create FastAPI app
app = FastAPI(
    title="Bank Time Simulator API",
    description="Simulated retail bank ledger driven by a virtual calendar",
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


def get_bank_system() -> BankSystem:
    global bank_system
    if bank_system is None:
        bank_system = BankSystem()
    return bank_system


@contextmanager
def banking_errors():
    """Translate simulator errors into HTTP responses"""
    try:
        yield
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (BankingError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


def _summary_to_dict(summary: SimulationSummary) -> Dict[str, Any]:
    return {
        "start_date": summary.start_date.isoformat(),
        "end_date": summary.end_date.isoformat(),
        "days_processed": summary.days_processed,
        "interest_accrued": str(summary.interest_accrued),
        "interest_applied": str(summary.interest_applied),
        "fees_charged": str(summary.fees_charged),
        "orders_executed": summary.orders_executed,
        "orders_skipped": summary.orders_skipped,
        "orders_failed": summary.orders_failed,
        "bills_overdue": summary.bills_overdue,
        "transaction_ids": summary.transaction_ids,
        "errors": summary.errors
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/")
async def root():
    """Root endpoint with system information"""
    return {
        "system": "Bank Time Simulator",
        "version": __version__,
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "clock": "/clock",
            "customers": "/customers",
            "accounts": "/accounts",
            "transactions": "/transactions",
            "bills": "/bills",
            "standing_orders": "/standing-orders"
        }
    }


# Clock Endpoints
@app.get("/clock")
def get_clock(system: BankSystem = Depends(get_bank_system)):
    """Current simulated date"""
    context = system.context
    return {
        "current_date": context.current_date.isoformat(),
        "last_processed_date": context.last_processed_date.isoformat() if context.last_processed_date else None
    }


@app.post("/clock/simulate")
def simulate(request: SimulateRequest, system: BankSystem = Depends(get_bank_system)):
    """Simulate up to and including target_date"""
    with banking_errors():
        summary = system.engine.simulate(request.target_date)
    return _summary_to_dict(summary)


@app.post("/clock/advance")
def advance(request: AdvanceRequest, system: BankSystem = Depends(get_bank_system)):
    """Simulate a number of days forward"""
    with banking_errors():
        summary = system.engine.simulate_days(request.days)
    return _summary_to_dict(summary)


@app.post("/clock/what-if")
def what_if(request: SimulateRequest, system: BankSystem = Depends(get_bank_system)):
    """Project balances at target_date without changing anything"""
    with banking_errors():
        projected, summary = system.engine.what_if(request.target_date)
    return {
        "summary": _summary_to_dict(summary),
        "accounts": [account_to_dict(a) for a in projected.accounts.list_accounts()],
        "bills": [bill_to_dict(b) for b in projected.bills.list_bills()]
    }


@app.post("/clock/reset")
def reset_clock(request: ResetDateRequest, system: BankSystem = Depends(get_bank_system)):
    """Administrative reset of the simulated date"""
    system.engine.reset_date(request.new_date)
    return {"current_date": system.context.current_date.isoformat()}


# Customer Endpoints
@app.post("/customers/individual", status_code=status.HTTP_201_CREATED)
def register_individual(request: RegisterIndividualRequest, system: BankSystem = Depends(get_bank_system)):
    """Register an individual customer"""
    with banking_errors(), system.context.lock:
        customer = system.context.customers.register_individual(
            username=request.username,
            full_name=request.full_name,
            address=request.address,
            phone=request.phone,
            tax_id=request.tax_id
        )
        system.persist()
    return {"customer_id": customer.id, "message": "Customer registered successfully"}


@app.post("/customers/business", status_code=status.HTTP_201_CREATED)
def register_business(request: RegisterBusinessRequest, system: BankSystem = Depends(get_bank_system)):
    """Register a business customer"""
    with banking_errors(), system.context.lock:
        customer = system.context.customers.register_business(
            username=request.username,
            business_name=request.business_name,
            vat_number=request.vat_number,
            phone=request.phone
        )
        system.persist()
    return {"customer_id": customer.id, "message": "Customer registered successfully"}


@app.get("/customers/{customer_id}")
def get_customer(customer_id: str, system: BankSystem = Depends(get_bank_system)):
    with banking_errors():
        customer = system.context.customers.get(customer_id)
    data = customer_to_dict(customer)
    data.pop("password_hash")
    return data


@app.get("/customers/{customer_id}/accounts")
def get_customer_accounts(customer_id: str, system: BankSystem = Depends(get_bank_system)):
    accounts = system.context.accounts.accounts_for_owner(customer_id)
    return {"accounts": [account_to_dict(a) for a in accounts]}


@app.get("/customers/{customer_id}/bills")
def get_customer_bills(customer_id: str, unpaid_only: bool = False,
                       system: BankSystem = Depends(get_bank_system)):
    bills = system.context.bills
    found = bills.unpaid_bills_for_owner(customer_id) if unpaid_only else bills.bills_for_owner(customer_id)
    return {"bills": [bill_to_dict(b) for b in found]}


@app.get("/customers/{customer_id}/standing-orders")
def get_customer_orders(customer_id: str, system: BankSystem = Depends(get_bank_system)):
    orders = system.context.standing_orders.orders_for_owner(customer_id)
    return {"standing_orders": [standing_order_to_dict(o) for o in orders]}


# Account Endpoints
@app.post("/accounts", status_code=status.HTTP_201_CREATED)
def open_account(request: OpenAccountRequest, system: BankSystem = Depends(get_bank_system)):
    """Open a personal or business account"""
    context = system.context
    with banking_errors(), context.lock:
        context.customers.get(request.owner_id)
        initial_balance = to_decimal(request.initial_balance)
        interest_rate = to_decimal(request.interest_rate) if request.interest_rate else None

        if request.account_type == "business":
            fee = to_decimal(request.maintenance_fee) if request.maintenance_fee else None
            account = context.accounts.open_business_account(
                request.owner_id, initial_balance, maintenance_fee=fee,
                interest_rate=interest_rate, opened_on=context.current_date
            )
        elif request.account_type == "personal":
            account = context.accounts.open_personal_account(
                request.owner_id, initial_balance,
                interest_rate=interest_rate, opened_on=context.current_date
            )
        else:
            raise ValueError(f"Unknown account type: {request.account_type}")
        system.persist()
    return {"iban": account.iban, "message": "Account opened successfully"}


@app.get("/accounts/{iban}")
def get_account(iban: str, system: BankSystem = Depends(get_bank_system)):
    with banking_errors():
        account = system.context.accounts.get_account(iban)
    return account_to_dict(account)


@app.post("/accounts/{iban}/status")
def set_account_status(iban: str, request: AccountStatusRequest,
                       system: BankSystem = Depends(get_bank_system)):
    """Freeze, unfreeze, deactivate or close an account"""
    context = system.context
    with banking_errors(), context.lock:
        new_status = AccountStatus(request.status)
        if new_status == AccountStatus.CLOSED:
            account = context.accounts.close(iban, request.reason)
        else:
            account = context.accounts.set_status(iban, new_status, request.reason)
        system.persist()
    return {"iban": account.iban, "status": account.status.value}


@app.post("/accounts/{iban}/co-owners")
def add_co_owner(iban: str, request: CoOwnerRequest, system: BankSystem = Depends(get_bank_system)):
    context = system.context
    with banking_errors(), context.lock:
        context.customers.get(request.customer_id)
        account = context.accounts.add_co_owner(iban, request.customer_id)
        system.persist()
    return {"iban": account.iban, "co_owner_ids": account.co_owner_ids}


@app.get("/accounts/{iban}/transactions")
def get_account_transactions(iban: str, limit: Optional[int] = 50,
                             system: BankSystem = Depends(get_bank_system)):
    """Transaction history for an account, newest first"""
    with banking_errors():
        system.context.accounts.get_account(iban)
    transactions = system.context.ledger.recent_for_account(iban, limit)
    return {"transactions": [transaction_to_dict(t) for t in transactions]}


# Transaction Endpoints
@app.post("/transactions/deposit")
def deposit(request: DepositRequest, system: BankSystem = Depends(get_bank_system)):
    """Make a deposit"""
    context = system.context
    with banking_errors(), context.lock:
        transaction = context.processor.deposit(
            request.iban, to_decimal(request.amount), request.description, at=context.now()
        )
        system.persist()
    return {"transaction_id": transaction.id, "balance_after": str(transaction.balance_after)}


@app.post("/transactions/withdraw")
def withdraw(request: WithdrawRequest, system: BankSystem = Depends(get_bank_system)):
    """Make a withdrawal"""
    context = system.context
    with banking_errors(), context.lock:
        transaction = context.processor.withdraw(
            request.iban, to_decimal(request.amount), request.description, at=context.now()
        )
        system.persist()
    return {"transaction_id": transaction.id, "balance_after": str(transaction.balance_after)}


@app.post("/transactions/transfer")
def transfer(request: TransferRequest, system: BankSystem = Depends(get_bank_system)):
    """Transfer between two internal accounts"""
    context = system.context
    with banking_errors(), context.lock:
        outgoing, incoming = context.processor.transfer(
            request.from_iban, request.to_iban, to_decimal(request.amount),
            request.description, at=context.now()
        )
        system.persist()
    return {
        "transaction_ids": [outgoing.id, incoming.id],
        "balance_after": str(outgoing.balance_after)
    }


@app.post("/transactions/external")
def external_transfer(request: ExternalTransferRequest, system: BankSystem = Depends(get_bank_system)):
    """SEPA or SWIFT transfer through the external gateway"""
    context = system.context
    with banking_errors(), context.lock:
        recipient = RecipientDetails(
            mechanism=TransferMechanism(request.mechanism.lower()),
            account=request.recipient_account,
            name=request.recipient_name,
            bank_code=request.bank_code,
            bank_name=request.bank_name,
            address=request.address,
            country=request.country,
            charges=request.charges
        )
        result, transaction = context.processor.external_transfer(
            request.iban, to_decimal(request.amount), recipient,
            request.description, at=context.now()
        )
        if transaction is not None:
            system.persist()
    return {
        "success": result.success,
        "message": result.message,
        "gateway_transaction_id": result.transaction_id,
        "transaction_id": transaction.id if transaction else None
    }


@app.post("/transactions/{transaction_id}/refund")
def refund_bill_payment(transaction_id: int, request: RefundRequest,
                        system: BankSystem = Depends(get_bank_system)):
    """Reverse a bill payment and reopen the bill"""
    context = system.context
    with banking_errors(), context.lock:
        refund = context.processor.refund_bill_payment(
            transaction_id, BillStatus(request.previous_status), at=context.now()
        )
        system.persist()
    return {"transaction_id": refund.id, "balance_after": str(refund.balance_after)}


# Bill Endpoints
@app.post("/bills", status_code=status.HTTP_201_CREATED)
def create_bill(request: CreateBillRequest, system: BankSystem = Depends(get_bank_system)):
    """Issue a bill from a business customer to an individual"""
    context = system.context
    with banking_errors(), context.lock:
        issuer = context.customers.get(request.issuer_id)
        if not issuer.is_business:
            raise ValueError("Bills can only be issued by business customers")
        context.customers.get(request.owner_id)
        bill = context.bills.create_bill(
            owner_id=request.owner_id,
            issuer_id=request.issuer_id,
            provider_name=request.provider_name,
            amount=to_decimal(request.amount),
            due_date=request.due_date,
            reference_code=request.reference_code
        )
        system.persist()
    return {"bill_id": bill.id, "reference_code": bill.reference_code}


@app.get("/bills/{bill_id}")
def get_bill(bill_id: str, system: BankSystem = Depends(get_bank_system)):
    with banking_errors():
        bill = system.context.bills.get_bill(bill_id)
    return bill_to_dict(bill)


@app.post("/bills/{bill_id}/pay")
def pay_bill(bill_id: str, request: PayBillRequest, system: BankSystem = Depends(get_bank_system)):
    """Pay a bill manually (bill-payment fee applies)"""
    context = system.context
    with banking_errors(), context.lock:
        transaction = context.processor.pay_bill(bill_id, request.iban, at=context.now())
        system.persist()
    return {
        "transaction_id": transaction.id,
        "fee": str(transaction.fee),
        "balance_after": str(transaction.balance_after)
    }


@app.post("/bills/{bill_id}/cancel")
def cancel_bill(bill_id: str, system: BankSystem = Depends(get_bank_system)):
    context = system.context
    with banking_errors(), context.lock:
        bill = context.bills.cancel_bill(bill_id)
        system.persist()
    return {"bill_id": bill.id, "status": bill.status.value}


# Standing Order Endpoints
@app.post("/standing-orders/transfer", status_code=status.HTTP_201_CREATED)
def create_transfer_order(request: TransferOrderRequest, system: BankSystem = Depends(get_bank_system)):
    """Create a recurring transfer"""
    context = system.context
    with banking_errors(), context.lock:
        order = context.standing_orders.create_transfer_order(
            owner_id=request.owner_id,
            source_iban=request.source_iban,
            destination_iban=request.destination_iban,
            amount=to_decimal(request.amount),
            frequency_months=request.frequency_months,
            execution_day=request.execution_day,
            start_date=context.current_date,
            description=request.description
        )
        system.persist()
    return standing_order_to_dict(order)


@app.post("/standing-orders/bill-payment", status_code=status.HTTP_201_CREATED)
def create_bill_payment_order(request: BillPaymentOrderRequest,
                              system: BankSystem = Depends(get_bank_system)):
    """Create an automatic bill payment"""
    context = system.context
    with banking_errors(), context.lock:
        order = context.standing_orders.create_bill_payment_order(
            owner_id=request.owner_id,
            source_iban=request.source_iban,
            start_date=context.current_date,
            reference_code=request.reference_code,
            provider_name=request.provider_name,
            amount=to_decimal(request.amount) if request.amount else None,
            frequency_months=request.frequency_months,
            execution_day=request.execution_day
        )
        system.persist()
    return standing_order_to_dict(order)


@app.get("/standing-orders/{order_id}")
def get_standing_order(order_id: str, system: BankSystem = Depends(get_bank_system)):
    with banking_errors():
        order = system.context.standing_orders.get_order(order_id)
    return standing_order_to_dict(order)


@app.post("/standing-orders/{order_id}/pause")
def pause_order(order_id: str, system: BankSystem = Depends(get_bank_system)):
    context = system.context
    with banking_errors(), context.lock:
        order = context.standing_orders.pause_order(order_id)
        system.persist()
    return standing_order_to_dict(order)


@app.post("/standing-orders/{order_id}/resume")
def resume_order(order_id: str, system: BankSystem = Depends(get_bank_system)):
    context = system.context
    with banking_errors(), context.lock:
        order = context.standing_orders.resume_order(order_id, context.current_date)
        system.persist()
    return standing_order_to_dict(order)


@app.post("/standing-orders/{order_id}/cancel")
def cancel_order(order_id: str, system: BankSystem = Depends(get_bank_system)):
    context = system.context
    with banking_errors(), context.lock:
        order = context.standing_orders.cancel_order(order_id)
        system.persist()
    return standing_order_to_dict(order)


# Run server function
def run_server(host: str = "0.0.0.0", port: int = 8090, log_level: str = "info"):
    """Run the FastAPI server on the already configured global system"""
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level
    )
