"""
Test suite for the time simulation engine

Covers the per-day phase order, month-end settlement, composability of
consecutive runs, backwards-time rejection, what-if runs and clock resets.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime

from bank_simulator.accounts import daily_rate_for
from bank_simulator.bills import BillStatus
from bank_simulator.config import SimulatorConfig
from bank_simulator.currency import ZERO
from bank_simulator.errors import BackwardsTimeError, ValidationError
from bank_simulator.gateway import SimulatedTransferGateway
from bank_simulator.persistence import BankRepository
from bank_simulator.simulation import SimulationContext, TimeSimulationEngine
from bank_simulator.storage import InMemoryStorage
from bank_simulator.transactions import TransactionType


def make_context(start=date(2024, 3, 1), settle_on_target_date=True):
    return SimulationContext.build(
        current_date=start,
        config=SimulatorConfig(settle_on_target_date=settle_on_target_date),
        gateway=SimulatedTransferGateway(success_rate=1.0, seed=1)
    )


def populate(context):
    """A small bank with interest, a fee, a monthly transfer and two bills"""
    accounts = context.accounts
    john = accounts.open_personal_account("IND0001", Decimal("1000.00"))
    maria = accounts.open_personal_account("IND0002", Decimal("500.00"), interest_rate=Decimal("0.025"))
    shop = accounts.open_business_account("BUS0003", Decimal("2000.00"))
    context.bills.create_bill("IND0001", "BUS0003", "Shop", Decimal("85.50"),
                              date(2024, 3, 11), "RF00001234")
    context.bills.create_bill("IND0002", "BUS0003", "Shop", Decimal("40.00"),
                              date(2024, 4, 5), "RF00001235")
    context.standing_orders.create_transfer_order(
        "IND0001", john.iban, maria.iban, Decimal("100.00"),
        frequency_months=1, execution_day=20, start_date=context.current_date
    )
    context.standing_orders.create_bill_payment_order(
        "IND0002", maria.iban, context.current_date, reference_code="RF00001235",
        frequency_months=1, execution_day=2
    )
    return john, maria, shop


def snapshot(context):
    return {
        "accounts": [(a.iban, a.balance, a.accrued_interest, a.status)
                     for a in context.accounts.list_accounts()],
        "bills": [(b.id, b.status, b.paid_at) for b in context.bills.list_bills()],
        "orders": [(o.id, o.status, o.next_execution_date, o.execution_count)
                   for o in context.standing_orders.list_orders()],
        "transactions": [(t.id, t.transaction_type, t.amount, t.balance_after, t.timestamp)
                         for t in context.ledger.all()],
        "current_date": context.current_date,
    }


class TestSingleDay:
    """Test one-day runs and the phase order"""

    def test_same_day_processes_once(self):
        context = make_context(settle_on_target_date=False)
        account = context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        engine = TimeSimulationEngine(context)

        summary = engine.simulate(date(2024, 3, 1))
        assert summary.days_processed == 1
        assert account.accrued_interest == Decimal("1000.00") * daily_rate_for(Decimal("0.01"))
        assert context.current_date == date(2024, 3, 1)
        assert context.last_processed_date == date(2024, 3, 1)

        assert engine.simulate(date(2024, 3, 1)).days_processed == 0

    def test_target_day_settlement(self):
        """With target-day settlement the accrued interest is realised on arrival"""
        context = make_context()
        account = context.accounts.open_personal_account("IND0001", Decimal("1000.00"))

        summary = TimeSimulationEngine(context).simulate(date(2024, 3, 1))
        assert account.accrued_interest == ZERO
        assert account.balance > Decimal("1000.00")
        assert summary.interest_applied == account.balance - Decimal("1000.00")

    def test_backwards_rejected_before_mutation(self):
        context = make_context()
        account = context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        with pytest.raises(BackwardsTimeError):
            TimeSimulationEngine(context).simulate(date(2024, 2, 29))
        assert context.current_date == date(2024, 3, 1)
        assert context.last_processed_date is None
        assert account.accrued_interest == ZERO
        assert len(context.ledger) == 0

    def test_negative_days_rejected(self):
        with pytest.raises(ValidationError):
            TimeSimulationEngine(make_context()).simulate_days(-1)

    def test_advance_day(self):
        context = make_context()
        engine = TimeSimulationEngine(context)
        engine.simulate(date(2024, 3, 1))
        summary = engine.advance_day()
        assert context.current_date == date(2024, 3, 2)
        assert summary.days_processed == 1


class TestScenarios:
    """End-to-end behaviour over simulated weeks"""

    def test_thirty_days_of_interest(self):
        """1000.00 at 1% for the 30 days of April"""
        context = make_context(start=date(2024, 4, 1))
        account = context.accounts.open_personal_account("IND0001", Decimal("1000.00"))

        summary = TimeSimulationEngine(context).simulate(date(2024, 4, 30))
        assert summary.days_processed == 30
        assert account.balance == Decimal("1000.821919")
        assert account.balance.quantize(Decimal("0.01")) == Decimal("1000.82")
        assert account.accrued_interest == ZERO

        interest = context.ledger.of_type(TransactionType.INTEREST)
        assert len(interest) == 1
        assert interest[0].amount == Decimal("0.821919")
        assert interest[0].timestamp == datetime(2024, 4, 30)

    def test_underfunded_transfer_order_is_skipped(self):
        """100.00 order against a 50.00 balance moves nothing"""
        context = make_context()
        source = context.accounts.open_personal_account("IND0001", Decimal("50.00"), interest_rate=ZERO)
        target = context.accounts.open_personal_account("IND0002", Decimal("0.00"), interest_rate=ZERO)
        order = context.standing_orders.create_transfer_order(
            "IND0001", source.iban, target.iban, Decimal("100.00"),
            frequency_months=1, execution_day=20, start_date=date(2024, 3, 1)
        )

        summary = TimeSimulationEngine(context).simulate(date(2024, 3, 20))
        assert summary.orders_skipped == 1
        assert summary.orders_executed == 0
        assert source.balance == Decimal("50.00")
        assert target.balance == ZERO
        assert len(context.ledger) == 0
        assert order.is_active
        assert order.next_execution_date == date(2024, 3, 20)

    def test_skipped_order_retried_next_day(self):
        context = make_context()
        source = context.accounts.open_personal_account("IND0001", Decimal("50.00"), interest_rate=ZERO)
        target = context.accounts.open_personal_account("IND0002", Decimal("0.00"), interest_rate=ZERO)
        context.standing_orders.create_transfer_order(
            "IND0001", source.iban, target.iban, Decimal("100.00"),
            frequency_months=1, execution_day=20, start_date=date(2024, 3, 1)
        )
        engine = TimeSimulationEngine(context)
        engine.simulate(date(2024, 3, 20))
        context.processor.deposit(source.iban, Decimal("60.00"), at=datetime(2024, 3, 20, 12))

        summary = engine.advance_day()
        assert summary.orders_executed == 1
        assert target.balance == Decimal("100.00")

    def test_bill_goes_overdue_and_stays_overdue(self):
        context = make_context()
        bill = context.bills.create_bill("IND0001", "BUS0002", "Greek Utilities Co",
                                         Decimal("85.50"), date(2024, 3, 11))
        engine = TimeSimulationEngine(context)

        engine.simulate_days(10)
        assert bill.status == BillStatus.UNPAID

        summary = engine.simulate_days(1)
        assert bill.status == BillStatus.OVERDUE
        assert summary.bills_overdue == [bill.id]

        engine.simulate_days(30)
        assert bill.status == BillStatus.OVERDUE

    def test_month_end_fee(self):
        context = make_context(settle_on_target_date=False)
        shop = context.accounts.open_business_account("BUS0001", Decimal("100.00"), interest_rate=ZERO)
        engine = TimeSimulationEngine(context)

        assert engine.simulate(date(2024, 3, 30)).fees_charged == ZERO
        summary = engine.simulate(date(2024, 4, 15))
        assert summary.fees_charged == Decimal("25.00")
        assert shop.balance == Decimal("75.00")

        engine.simulate(date(2024, 5, 31))
        assert shop.balance == Decimal("25.00")
        fees = context.ledger.of_type(TransactionType.MAINTENANCE_FEE)
        assert [t.timestamp.date() for t in fees] == [date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)]

    def test_inactive_accounts_are_left_alone(self):
        context = make_context()
        account = context.accounts.open_business_account("BUS0001", Decimal("100.00"))
        context.accounts.freeze(account.iban)

        TimeSimulationEngine(context).simulate(date(2024, 4, 30))
        assert account.balance == Decimal("100.00")
        assert account.accrued_interest == ZERO

    def test_failure_on_one_account_is_isolated(self, monkeypatch):
        context = make_context(settle_on_target_date=False)
        broken = context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        healthy = context.accounts.open_personal_account("IND0002", Decimal("1000.00"))

        def boom(precision=10):
            raise RuntimeError("corrupt record")

        monkeypatch.setattr(broken, "accrue_interest", boom)
        summary = TimeSimulationEngine(context).simulate(date(2024, 3, 3))

        assert summary.days_processed == 3
        assert len(summary.errors) == 3
        assert "corrupt record" in summary.errors[0]
        assert healthy.accrued_interest > ZERO
        assert context.current_date == date(2024, 3, 3)


class TestComposability:
    """Split runs end where a single run ends"""

    @pytest.mark.parametrize("middle", [date(2024, 3, 9), date(2024, 3, 20), date(2024, 4, 3)])
    def test_split_run_without_target_settlement(self, middle):
        direct = make_context(settle_on_target_date=False)
        populate(direct)
        TimeSimulationEngine(direct).simulate(date(2024, 4, 25))

        split = make_context(settle_on_target_date=False)
        populate(split)
        engine = TimeSimulationEngine(split)
        engine.simulate(middle)
        engine.simulate(date(2024, 4, 25))

        assert snapshot(split) == snapshot(direct)

    def test_split_at_month_end(self):
        """Target-day settlement coincides with month-end settlement"""
        direct = make_context()
        populate(direct)
        TimeSimulationEngine(direct).simulate(date(2024, 4, 30))

        split = make_context()
        populate(split)
        engine = TimeSimulationEngine(split)
        engine.simulate(date(2024, 3, 31))
        engine.simulate(date(2024, 4, 30))

        assert snapshot(split) == snapshot(direct)

    def test_populated_bank_over_two_months(self):
        context = make_context(settle_on_target_date=False)
        john, maria, shop = populate(context)
        summary = TimeSimulationEngine(context).simulate(date(2024, 4, 30))

        assert summary.orders_executed == 3
        assert john.balance + maria.balance + shop.balance > Decimal("3450.00")
        assert context.bills.get_bill("BILL000001").status == BillStatus.OVERDUE
        assert context.bills.get_bill("BILL000002").status == BillStatus.PAID
        assert all(b >= ZERO for b in (john.balance, maria.balance, shop.balance))


class TestEngineHelpers:
    """Test what-if runs, clock resets and persistence hooks"""

    def test_what_if_leaves_context_untouched(self):
        context = make_context()
        john, maria, shop = populate(context)
        before = snapshot(context)

        scratch, summary = TimeSimulationEngine(context).what_if(date(2024, 5, 31))
        assert snapshot(context) == before
        assert scratch.current_date == date(2024, 5, 31)
        assert summary.days_processed == 92
        assert scratch.accounts.get_account(john.iban).balance != john.balance

    def test_reset_date(self):
        context = make_context()
        engine = TimeSimulationEngine(context)
        engine.simulate(date(2024, 3, 10))

        engine.reset_date(date(2024, 6, 1))
        assert context.current_date == date(2024, 6, 1)
        assert context.last_processed_date == date(2024, 5, 31)
        assert engine.simulate(date(2024, 6, 1)).days_processed == 1

    def test_state_saved_after_run(self):
        context = make_context()
        populate(context)
        repository = BankRepository(InMemoryStorage())
        TimeSimulationEngine(context, repository).simulate(date(2024, 3, 15))

        assert repository.current_date() == date(2024, 3, 15)
        assert repository.last_processed_date() == date(2024, 3, 15)
        assert len(repository.list_transactions()) == len(context.ledger)
        restored = {a.iban: a.balance for a in repository.list_accounts()}
        assert restored == {a.iban: a.balance for a in context.accounts.list_accounts()}

    def test_month_end_detection(self):
        assert TimeSimulationEngine.is_month_end(date(2024, 2, 29))
        assert TimeSimulationEngine.is_month_end(date(2024, 12, 31))
        assert not TimeSimulationEngine.is_month_end(date(2023, 2, 27))
