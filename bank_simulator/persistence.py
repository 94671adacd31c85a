"""
Persistence Module

Maps simulator entities to JSON-safe records on a StorageInterface and back.
Decimals are stored as strings and dates as ISO strings so nothing is lost on
a round trip. The whole bank state is written in one atomic batch after each
simulate call or manual operation.
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .accounts import Account, AccountStatus, AccountType
from .bills import Bill, BillStatus
from .config import SimulatorConfig, get_config
from .customers import Customer, CustomerType
from .gateway import TransferGateway
from .logging_config import get_logger, log_action
from .simulation import SimulationContext
from .standing_orders import OrderStatus, OrderType, StandingOrder
from .storage import StorageInterface
from .transactions import Transaction, TransactionStatus, TransactionType


ACCOUNTS_TABLE = "accounts"
BILLS_TABLE = "bills"
STANDING_ORDERS_TABLE = "standing_orders"
TRANSACTIONS_TABLE = "transactions"
CUSTOMERS_TABLE = "customers"
SYSTEM_TABLE = "system_state"
CLOCK_RECORD = "clock"


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "iban": account.iban,
        "owner_id": account.owner_id,
        "account_type": account.account_type.value,
        "balance": str(account.balance),
        "status": account.status.value,
        "interest_rate": str(account.interest_rate),
        "accrued_interest": str(account.accrued_interest),
        "maintenance_fee": _str(account.maintenance_fee),
        "co_owner_ids": list(account.co_owner_ids),
        "opened_on": _iso(account.opened_on),
    }


def account_from_dict(data: Dict[str, Any]) -> Account:
    return Account(
        iban=data["iban"],
        owner_id=data["owner_id"],
        account_type=AccountType(data["account_type"]),
        balance=Decimal(data["balance"]),
        status=AccountStatus(data["status"]),
        interest_rate=Decimal(data["interest_rate"]),
        accrued_interest=Decimal(data["accrued_interest"]),
        maintenance_fee=_decimal(data.get("maintenance_fee")),
        co_owner_ids=list(data.get("co_owner_ids", [])),
        opened_on=_date(data.get("opened_on")),
    )


def bill_to_dict(bill: Bill) -> Dict[str, Any]:
    return {
        "id": bill.id,
        "provider_name": bill.provider_name,
        "amount": str(bill.amount),
        "due_date": bill.due_date.isoformat(),
        "reference_code": bill.reference_code,
        "owner_id": bill.owner_id,
        "issuer_id": bill.issuer_id,
        "status": bill.status.value,
        "paid_at": _iso(bill.paid_at),
    }


def bill_from_dict(data: Dict[str, Any]) -> Bill:
    return Bill(
        id=data["id"],
        provider_name=data["provider_name"],
        amount=Decimal(data["amount"]),
        due_date=date.fromisoformat(data["due_date"]),
        reference_code=data["reference_code"],
        owner_id=data["owner_id"],
        issuer_id=data["issuer_id"],
        status=BillStatus(data["status"]),
        paid_at=_datetime(data.get("paid_at")),
    )


def standing_order_to_dict(order: StandingOrder) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_type": order.order_type.value,
        "owner_id": order.owner_id,
        "source_iban": order.source_iban,
        "status": order.status.value,
        "description": order.description,
        "destination_iban": order.destination_iban,
        "amount": _str(order.amount),
        "frequency_months": order.frequency_months,
        "execution_day": order.execution_day,
        "next_execution_date": _iso(order.next_execution_date),
        "reference_code": order.reference_code,
        "provider_name": order.provider_name,
        "created_on": _iso(order.created_on),
        "last_executed_on": _iso(order.last_executed_on),
        "execution_count": order.execution_count,
    }


def standing_order_from_dict(data: Dict[str, Any]) -> StandingOrder:
    return StandingOrder(
        id=data["id"],
        order_type=OrderType(data["order_type"]),
        owner_id=data["owner_id"],
        source_iban=data["source_iban"],
        status=OrderStatus(data["status"]),
        description=data.get("description", ""),
        destination_iban=data.get("destination_iban"),
        amount=_decimal(data.get("amount")),
        frequency_months=data.get("frequency_months"),
        execution_day=data.get("execution_day"),
        next_execution_date=_date(data.get("next_execution_date")),
        reference_code=data.get("reference_code"),
        provider_name=data.get("provider_name"),
        created_on=_date(data.get("created_on")),
        last_executed_on=_date(data.get("last_executed_on")),
        execution_count=data.get("execution_count", 0),
    )


def transaction_to_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "timestamp": transaction.timestamp.isoformat(),
        "amount": str(transaction.amount),
        "transaction_type": transaction.transaction_type.value,
        "description": transaction.description,
        "balance_after": str(transaction.balance_after),
        "account_iban": transaction.account_iban,
        "from_iban": transaction.from_iban,
        "to_iban": transaction.to_iban,
        "status": transaction.status.value,
        "fee": str(transaction.fee),
        "external_reference": transaction.external_reference,
        "bill_id": transaction.bill_id,
    }


def transaction_from_dict(data: Dict[str, Any]) -> Transaction:
    return Transaction(
        id=int(data["id"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        amount=Decimal(data["amount"]),
        transaction_type=TransactionType(data["transaction_type"]),
        description=data["description"],
        balance_after=Decimal(data["balance_after"]),
        account_iban=data["account_iban"],
        from_iban=data.get("from_iban"),
        to_iban=data.get("to_iban"),
        status=TransactionStatus(data["status"]),
        fee=Decimal(data.get("fee", "0")),
        external_reference=data.get("external_reference"),
        bill_id=data.get("bill_id"),
    )


def customer_to_dict(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "username": customer.username,
        "customer_type": customer.customer_type.value,
        "display_name": customer.display_name,
        "phone": customer.phone,
        "locked": customer.locked,
        "password_hash": customer.password_hash,
        "address": customer.address,
        "tax_id": customer.tax_id,
        "vat_number": customer.vat_number,
        "admin_level": customer.admin_level,
    }


def customer_from_dict(data: Dict[str, Any]) -> Customer:
    # The password hash is an ordinary constructor argument
    return Customer(
        id=data["id"],
        username=data["username"],
        customer_type=CustomerType(data["customer_type"]),
        display_name=data["display_name"],
        phone=data.get("phone", ""),
        locked=data.get("locked", False),
        password_hash=data.get("password_hash"),
        address=data.get("address"),
        tax_id=data.get("tax_id"),
        vat_number=data.get("vat_number"),
        admin_level=data.get("admin_level"),
    )


class BankRepository:
    """Reads and writes the whole bank state through a storage backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("banksim.persistence")

    def list_accounts(self) -> List[Account]:
        return [account_from_dict(r) for r in self.storage.load_all(ACCOUNTS_TABLE)]

    def list_bills(self) -> List[Bill]:
        return [bill_from_dict(r) for r in self.storage.load_all(BILLS_TABLE)]

    def list_standing_orders(self) -> List[StandingOrder]:
        return [standing_order_from_dict(r) for r in self.storage.load_all(STANDING_ORDERS_TABLE)]

    def list_transactions(self) -> List[Transaction]:
        transactions = [transaction_from_dict(r) for r in self.storage.load_all(TRANSACTIONS_TABLE)]
        return sorted(transactions, key=lambda t: t.id)

    def list_customers(self) -> List[Customer]:
        return [customer_from_dict(r) for r in self.storage.load_all(CUSTOMERS_TABLE)]

    def _clock(self) -> Dict[str, Any]:
        return self.storage.load(SYSTEM_TABLE, CLOCK_RECORD) or {}

    def current_date(self) -> Optional[date]:
        """Persisted simulated date, None for an empty store"""
        return _date(self._clock().get("current_date"))

    def last_processed_date(self) -> Optional[date]:
        return _date(self._clock().get("last_processed_date"))

    def is_empty(self) -> bool:
        return self.current_date() is None

    def save_all(
        self,
        accounts: List[Account],
        bills: List[Bill],
        standing_orders: List[StandingOrder],
        transactions: List[Transaction],
        current_date: date,
        customers: Optional[List[Customer]] = None,
        last_processed_date: Optional[date] = None
    ) -> None:
        """Replace the stored state with the given entities in one atomic batch"""
        storage = self.storage
        with storage.atomic():
            for table, records, key in (
                (ACCOUNTS_TABLE, [account_to_dict(a) for a in accounts], "iban"),
                (BILLS_TABLE, [bill_to_dict(b) for b in bills], "id"),
                (STANDING_ORDERS_TABLE, [standing_order_to_dict(o) for o in standing_orders], "id"),
                (TRANSACTIONS_TABLE, [transaction_to_dict(t) for t in transactions], "id"),
            ):
                storage.clear_table(table)
                for record in records:
                    storage.save(table, str(record[key]), record)

            if customers is not None:
                storage.clear_table(CUSTOMERS_TABLE)
                for customer in customers:
                    storage.save(CUSTOMERS_TABLE, customer.id, customer_to_dict(customer))

            storage.save(SYSTEM_TABLE, CLOCK_RECORD, {
                "current_date": current_date.isoformat(),
                "last_processed_date": _iso(last_processed_date),
            })

        log_action(
            self.logger, "info", "Bank state saved",
            action="save_all", simulated_date=current_date,
            extra={
                "accounts": len(accounts),
                "bills": len(bills),
                "standing_orders": len(standing_orders),
                "transactions": len(transactions)
            }
        )

    def save_context(self, context: SimulationContext) -> None:
        self.save_all(
            accounts=context.accounts.list_accounts(),
            bills=context.bills.list_bills(),
            standing_orders=context.standing_orders.list_orders(),
            transactions=context.ledger.all(),
            current_date=context.current_date,
            customers=context.customers.list_customers(),
            last_processed_date=context.last_processed_date
        )

    def load_context(
        self,
        default_date: Optional[date] = None,
        config: Optional[SimulatorConfig] = None,
        gateway: Optional[TransferGateway] = None
    ) -> SimulationContext:
        """
        Build a SimulationContext from the stored state.

        An empty store yields an empty bank dated default_date (today when
        omitted).
        """
        current = self.current_date() or default_date or date.today()
        return SimulationContext.build(
            current_date=current,
            accounts=self.list_accounts(),
            bills=self.list_bills(),
            standing_orders=self.list_standing_orders(),
            transactions=self.list_transactions(),
            customers=self.list_customers(),
            config=config or get_config(),
            gateway=gateway,
            last_processed_date=self.last_processed_date()
        )
