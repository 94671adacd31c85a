"""
Time Simulation Engine Module

Steps the simulated calendar one day at a time. Each day runs, in this fixed
order:

1. daily interest accrual on every ACTIVE account
2. on the last day of a month (or the target day): monthly interest
   realisation on every ACTIVE account and the maintenance fee on every
   ACTIVE business account
3. the standing order pass for the day
4. bill aging for the day

A failure on one account, order or bill is logged and recorded in the run
summary; the rest of the day and the remaining days still run.
"""

import copy
import threading
from decimal import Decimal
from datetime import date, datetime, time, timedelta
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from .accounts import Account, AccountManager
from .bills import Bill, BillManager
from .config import SimulatorConfig, get_config
from .currency import ZERO
from .customers import Customer, CustomerDirectory
from .errors import BackwardsTimeError, ValidationError
from .gateway import TransferGateway
from .logging_config import get_logger, log_action
from .standing_orders import StandingOrder, StandingOrderManager
from .transactions import Transaction, TransactionLedger, TransactionProcessor

if TYPE_CHECKING:
    from .persistence import BankRepository


logger = get_logger("banksim.simulation")


@dataclass
class SimulationContext:
    """
    Everything a simulation run touches.

    Built once at start-up and passed to whoever needs it. Each manager owns
    its entities; other components refer to them by id.
    """
    current_date: date
    accounts: AccountManager
    bills: BillManager
    ledger: TransactionLedger
    processor: TransactionProcessor
    standing_orders: StandingOrderManager
    customers: CustomerDirectory
    config: SimulatorConfig
    last_processed_date: Optional[date] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @classmethod
    def build(
        cls,
        current_date: date,
        accounts: Optional[List[Account]] = None,
        bills: Optional[List[Bill]] = None,
        standing_orders: Optional[List[StandingOrder]] = None,
        transactions: Optional[List[Transaction]] = None,
        customers: Optional[List[Customer]] = None,
        config: Optional[SimulatorConfig] = None,
        gateway: Optional[TransferGateway] = None,
        last_processed_date: Optional[date] = None
    ) -> "SimulationContext":
        """Wire the managers together around the given entities"""
        config = config or get_config()
        account_manager = AccountManager(accounts)
        bill_manager = BillManager(bills)
        ledger = TransactionLedger(transactions)
        processor = TransactionProcessor(account_manager, bill_manager, ledger, gateway, config)
        order_manager = StandingOrderManager(
            account_manager, bill_manager, processor, standing_orders, config
        )
        return cls(
            current_date=current_date,
            accounts=account_manager,
            bills=bill_manager,
            ledger=ledger,
            processor=processor,
            standing_orders=order_manager,
            customers=CustomerDirectory(customers),
            config=config,
            last_processed_date=last_processed_date
        )

    def clone(self) -> "SimulationContext":
        """Independent deep copy of all entities (shares config and gateway)"""
        return SimulationContext.build(
            current_date=self.current_date,
            accounts=copy.deepcopy(self.accounts.list_accounts()),
            bills=copy.deepcopy(self.bills.list_bills()),
            standing_orders=copy.deepcopy(self.standing_orders.list_orders()),
            transactions=copy.deepcopy(self.ledger.all()),
            customers=copy.deepcopy(self.customers.list_customers()),
            config=self.config,
            gateway=self.processor.gateway,
            last_processed_date=self.last_processed_date
        )

    def now(self) -> datetime:
        """Wall-clock time of day on the simulated date"""
        return datetime.combine(self.current_date, datetime.now().time())


@dataclass
class SimulationSummary:
    """What a simulate call did"""
    start_date: date
    end_date: date
    days_processed: int = 0
    interest_accrued: Decimal = ZERO
    interest_applied: Decimal = ZERO
    fees_charged: Decimal = ZERO
    orders_executed: int = 0
    orders_skipped: int = 0
    orders_failed: int = 0
    bills_overdue: List[str] = field(default_factory=list)
    transaction_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class TimeSimulationEngine:
    """Drives a SimulationContext through simulated days"""

    def __init__(self, context: SimulationContext, repository: Optional["BankRepository"] = None):
        self.context = context
        self.repository = repository

    @staticmethod
    def is_month_end(day: date) -> bool:
        return (day + timedelta(days=1)).month != day.month

    def _record_error(self, summary: SimulationSummary, day: date, what: str, error: Exception) -> None:
        summary.errors.append(f"{day.isoformat()} {what}: {error}")
        log_action(
            logger, "warning", f"{what} failed: {error}",
            action="simulate_day", simulated_date=day,
            extra={"error_type": type(error).__name__}
        )

    def _accrue(self, day: date, summary: SimulationSummary) -> None:
        precision = self.context.config.interest_rate_precision
        for account in self.context.accounts.active_accounts():
            try:
                summary.interest_accrued += account.accrue_interest(precision)
            except Exception as e:
                self._record_error(summary, day, f"Interest accrual on {account.iban}", e)

    def _settle_month(self, day: date, at: datetime, summary: SimulationSummary) -> None:
        processor = self.context.processor
        for account in self.context.accounts.active_accounts():
            try:
                transaction = processor.record_interest(account.iban, at)
                if transaction:
                    summary.interest_applied += transaction.amount
                    summary.transaction_ids.append(transaction.id)
            except Exception as e:
                self._record_error(summary, day, f"Interest application on {account.iban}", e)

        for account in self.context.accounts.active_business_accounts():
            try:
                transaction = processor.record_maintenance_fee(account.iban, at)
                if transaction:
                    summary.fees_charged += transaction.amount
                    summary.transaction_ids.append(transaction.id)
            except Exception as e:
                self._record_error(summary, day, f"Maintenance fee on {account.iban}", e)

    def _process_day(self, day: date, target_date: date, summary: SimulationSummary) -> None:
        at = datetime.combine(day, time.min)

        self._accrue(day, summary)

        if self.is_month_end(day) or (day == target_date and self.context.config.settle_on_target_date):
            self._settle_month(day, at, summary)

        try:
            run = self.context.standing_orders.execute_due_orders(day)
            summary.orders_executed += len(run.executed)
            summary.orders_skipped += len(run.skipped)
            summary.orders_failed += len(run.failed)
            summary.transaction_ids.extend(t.id for t in run.transactions)
        except Exception as e:
            self._record_error(summary, day, "Standing order pass", e)

        try:
            overdue = self.context.bills.update_overdue_bills(day)
            summary.bills_overdue.extend(b.id for b in overdue)
        except Exception as e:
            self._record_error(summary, day, "Bill aging", e)

        summary.days_processed += 1

    def simulate(self, target_date: date) -> SimulationSummary:
        """
        Advance the context's calendar to target_date.

        Days already processed by an earlier call are not processed again, so
        a fresh context processes current_date itself and later calls continue
        from the day after the previous target.

        Raises:
            BackwardsTimeError: If target_date is before the current date
                (raised before anything is touched)
        """
        context = self.context
        with context.lock:
            start_date = context.current_date
            if target_date < start_date:
                raise BackwardsTimeError(
                    f"Cannot simulate backwards: target {target_date.isoformat()} "
                    f"is before current date {start_date.isoformat()}"
                )

            summary = SimulationSummary(start_date=start_date, end_date=target_date)
            log_action(
                logger, "info", f"Simulating {start_date.isoformat()} -> {target_date.isoformat()}",
                action="simulate_start", simulated_date=start_date
            )

            day = start_date
            if context.last_processed_date is not None and day <= context.last_processed_date:
                day = context.last_processed_date + timedelta(days=1)

            while day <= target_date:
                self._process_day(day, target_date, summary)
                context.last_processed_date = day
                day += timedelta(days=1)

            context.current_date = target_date
            self._save()

            log_action(
                logger, "info", f"Simulation complete, current date {target_date.isoformat()}",
                action="simulate_finish", simulated_date=target_date,
                extra={
                    "days_processed": summary.days_processed,
                    "interest_applied": str(summary.interest_applied),
                    "fees_charged": str(summary.fees_charged),
                    "orders_executed": summary.orders_executed,
                    "bills_overdue": len(summary.bills_overdue),
                    "errors": len(summary.errors)
                }
            )
            return summary

    def advance_day(self) -> SimulationSummary:
        return self.simulate(self.context.current_date + timedelta(days=1))

    def simulate_days(self, days: int) -> SimulationSummary:
        if days < 0:
            raise ValidationError("Number of days cannot be negative")
        return self.simulate(self.context.current_date + timedelta(days=days))

    def reset_date(self, new_date: date) -> None:
        """
        Administrative clock reset. Nothing is processed; the next simulate
        call starts at new_date.
        """
        with self.context.lock:
            self.context.current_date = new_date
            self.context.last_processed_date = new_date - timedelta(days=1)
            log_action(
                logger, "warning", f"Simulated date reset to {new_date.isoformat()}",
                action="reset_date", simulated_date=new_date
            )
            self._save()

    def what_if(self, target_date: date) -> Tuple[SimulationContext, SimulationSummary]:
        """Simulate on a copy; the engine's own context is left untouched"""
        with self.context.lock:
            scratch = self.context.clone()
        summary = TimeSimulationEngine(scratch).simulate(target_date)
        return scratch, summary

    def _save(self) -> None:
        if self.repository is None:
            return
        self.repository.save_context(self.context)
