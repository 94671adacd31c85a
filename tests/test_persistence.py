"""
Tests for saving and restoring the bank state
"""

import pytest
from decimal import Decimal
from datetime import date

from bank_simulator.accounts import AccountStatus
from bank_simulator.bills import BillStatus
from bank_simulator.config import SimulatorConfig
from bank_simulator.demo import load_demo_data
from bank_simulator.gateway import SimulatedTransferGateway
from bank_simulator.persistence import (
    BankRepository, customer_from_dict, customer_to_dict, transaction_from_dict
)
from bank_simulator.simulation import SimulationContext, TimeSimulationEngine
from bank_simulator.storage import InMemoryStorage, SQLiteStorage
from bank_simulator.standing_orders import OrderStatus
from bank_simulator.transactions import TransactionType


@pytest.fixture
def context():
    context = SimulationContext.build(
        current_date=date(2024, 3, 1),
        config=SimulatorConfig(),
        gateway=SimulatedTransferGateway(success_rate=1.0)
    )
    load_demo_data(context)
    return context


class TestBankRepository:
    """Test the full save/load cycle"""

    def test_empty_store(self):
        repository = BankRepository(InMemoryStorage())
        assert repository.is_empty()
        assert repository.current_date() is None

        context = repository.load_context(default_date=date(2024, 1, 1))
        assert context.current_date == date(2024, 1, 1)
        assert context.accounts.list_accounts() == []

    def test_round_trip_preserves_state(self, context):
        repository = BankRepository(InMemoryStorage())
        TimeSimulationEngine(context, repository).simulate(date(2024, 4, 20))

        restored = repository.load_context(gateway=SimulatedTransferGateway())
        assert restored.current_date == date(2024, 4, 20)
        assert restored.last_processed_date == date(2024, 4, 20)
        assert restored.accounts.list_accounts() == context.accounts.list_accounts()
        assert restored.bills.list_bills() == context.bills.list_bills()
        assert restored.standing_orders.list_orders() == context.standing_orders.list_orders()
        assert restored.ledger.all() == context.ledger.all()
        assert restored.customers.list_customers() == context.customers.list_customers()

    def test_exact_decimals_survive(self, context):
        repository = BankRepository(InMemoryStorage())
        TimeSimulationEngine(context, repository).simulate(date(2024, 3, 10))

        restored = {a.iban: a for a in repository.list_accounts()}
        for account in context.accounts.list_accounts():
            assert restored[account.iban].balance == account.balance
            assert restored[account.iban].accrued_interest == account.accrued_interest
            assert isinstance(restored[account.iban].balance, Decimal)

    def test_restored_managers_continue_numbering(self, context):
        repository = BankRepository(InMemoryStorage())
        repository.save_context(context)
        restored = repository.load_context()

        existing_ibans = {a.iban for a in context.accounts.list_accounts()}
        new_account = restored.accounts.open_personal_account("IND0001")
        assert new_account.iban not in existing_ibans

        new_bill = restored.bills.create_bill("IND0001", "BUS0004", "X", Decimal("1.00"), date(2024, 4, 1))
        assert new_bill.id not in {b.id for b in context.bills.list_bills()}

        last_id = context.ledger.all()[-1].id
        deposit = restored.processor.deposit(new_account.iban, Decimal("1.00"))
        assert deposit.id == last_id + 1

    def test_save_replaces_previous_state(self, context):
        repository = BankRepository(InMemoryStorage())
        repository.save_context(context)

        handle = context.accounts.list_accounts()[0]
        context.accounts.freeze(handle.iban)
        repository.save_context(context)

        accounts = repository.list_accounts()
        assert len(accounts) == len(context.accounts.list_accounts())
        assert [a.status for a in accounts if a.iban == handle.iban] == [AccountStatus.FROZEN]

    def test_sqlite_backend(self, context, tmp_path):
        storage = SQLiteStorage(tmp_path / "bank.db")
        repository = BankRepository(storage)
        repository.save_context(context)
        storage.close()

        reopened = BankRepository(SQLiteStorage(tmp_path / "bank.db"))
        restored = reopened.load_context()
        assert restored.current_date == date(2024, 3, 1)
        assert len(restored.ledger) == len(context.ledger)
        assert [o.status for o in restored.standing_orders.list_orders()] == [OrderStatus.ACTIVE]
        assert {b.status for b in restored.bills.list_bills()} == {BillStatus.UNPAID}


class TestRecordMapping:
    """Test individual record conversions"""

    def test_password_hash_is_a_plain_field(self):
        context = SimulationContext.build(current_date=date(2024, 3, 1))
        customer = context.customers.register_individual(
            "john", "John Smith", password_hash="pbkdf2$abc"
        )
        data = customer_to_dict(customer)
        assert data["password_hash"] == "pbkdf2$abc"
        assert customer_from_dict(data) == customer

    def test_transaction_without_fee_field(self):
        """Records written before fees were split out still load"""
        transaction = transaction_from_dict({
            "id": 7,
            "timestamp": "2024-03-01T10:00:00",
            "amount": "25.00",
            "transaction_type": "withdrawal",
            "description": "ATM",
            "balance_after": "75.00",
            "account_iban": "GR100000000000000001",
            "status": "completed",
        })
        assert transaction.transaction_type == TransactionType.WITHDRAWAL
        assert transaction.fee == Decimal("0")
        assert transaction.total == Decimal("25.00")
