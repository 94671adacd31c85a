"""
Standing Order Scheduler Module

Recurring customer instructions executed by the simulated calendar:
fixed-amount transfers between internal accounts and automatic payment of
bills matched by RF code or provider name.

Scheduling rule shared by both order types: from a reference date, the next
execution is the order's day-of-month in the same month when that is strictly
later, otherwise the same day frequency_months later (clamped to the month's
length). After each execution the rule is re-applied from the previous
execution date, so execution dates strictly increase.
"""

import calendar
from decimal import Decimal
from datetime import date, datetime, time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum

from .accounts import AccountManager
from .bills import BillManager
from .config import SimulatorConfig, get_config
from .currency import ZERO, format_amount
from .errors import ValidationError, EntityNotFoundError, InvalidStateError
from .logging_config import get_logger, log_action
from .transactions import Transaction, TransactionProcessor


class OrderType(Enum):
    """Standing order variants"""
    TRANSFER = "transfer"
    BILL_PAYMENT = "bill_payment"


class OrderStatus(Enum):
    """Standing order lifecycle states"""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ORDER_ID_PREFIX = "SO"


def clamp_to_month(year: int, month: int, day: int) -> date:
    """date(year, month, day) with day limited to the month's length"""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def add_months(start: date, months: int, day: int) -> date:
    """Move start forward by whole months and re-clamp to the target day"""
    month = start.month - 1 + months
    year = start.year + month // 12
    month = month % 12 + 1
    return clamp_to_month(year, month, day)


def next_execution_after(reference: date, execution_day: int, frequency_months: int) -> date:
    """First execution date strictly after reference"""
    candidate = clamp_to_month(reference.year, reference.month, execution_day)
    if candidate <= reference:
        candidate = add_months(candidate, frequency_months, execution_day)
    return candidate


@dataclass
class StandingOrder:
    """
    Recurring payment instruction.

    Every order carries a schedule (frequency_months and execution_day).
    TRANSFER orders also carry destination_iban and amount. BILL_PAYMENT
    orders carry reference_code and/or provider_name; the amount is an
    optional fallback for when no bill matches.
    """
    id: str
    order_type: OrderType
    owner_id: str
    source_iban: str
    status: OrderStatus = OrderStatus.ACTIVE
    description: str = ""
    destination_iban: Optional[str] = None
    amount: Optional[Decimal] = None
    frequency_months: Optional[int] = None
    execution_day: Optional[int] = None
    next_execution_date: Optional[date] = None
    reference_code: Optional[str] = None
    provider_name: Optional[str] = None
    created_on: Optional[date] = None
    last_executed_on: Optional[date] = None
    execution_count: int = 0

    def __post_init__(self):
        if self.amount is not None and self.amount <= ZERO:
            raise ValidationError("Standing order amount must be positive")
        if self.frequency_months is not None and self.frequency_months < 1:
            raise ValidationError("Frequency must be at least one month")
        if self.execution_day is not None and not 1 <= self.execution_day <= 31:
            raise ValidationError("Execution day must be between 1 and 31")
        if self.frequency_months is None or self.execution_day is None:
            raise ValidationError("Standing orders require a frequency and an execution day")

        if self.order_type == OrderType.TRANSFER:
            if not self.destination_iban:
                raise ValidationError("Transfer orders require a destination account")
            if self.amount is None:
                raise ValidationError("Transfer orders require an amount")
        elif not (self.reference_code or self.provider_name):
            raise ValidationError("Bill payment orders require a reference code or provider name")

    @property
    def is_active(self) -> bool:
        return self.status == OrderStatus.ACTIVE

    def schedule_from(self, reference: date) -> date:
        """Set next_execution_date to the first execution strictly after reference"""
        self.next_execution_date = next_execution_after(
            reference, self.execution_day, self.frequency_months
        )
        return self.next_execution_date

    def should_execute(self, current_date: date) -> bool:
        if not self.is_active:
            return False
        return self.next_execution_date is not None and self.next_execution_date <= current_date

    def advance_schedule(self) -> None:
        """Move next_execution_date one period forward from its current value"""
        self.next_execution_date = add_months(
            self.next_execution_date, self.frequency_months, self.execution_day
        )

    def record_execution(self, executed_on: Optional[date] = None) -> None:
        self.last_executed_on = executed_on or self.next_execution_date
        self.execution_count += 1
        self.advance_schedule()


@dataclass
class SchedulerRunResult:
    """Outcome of one scheduler pass"""
    run_date: date
    executed: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def executed_count(self) -> int:
        return len(self.executed)


class StandingOrderManager:
    """Creates, tracks and executes standing orders"""

    def __init__(
        self,
        accounts: AccountManager,
        bills: BillManager,
        processor: TransactionProcessor,
        orders: Optional[List[StandingOrder]] = None,
        config: Optional[SimulatorConfig] = None
    ):
        self.accounts = accounts
        self.bills = bills
        self.processor = processor
        self.config = config or get_config()
        self._orders: Dict[str, StandingOrder] = {o.id: o for o in (orders or [])}
        self._counter = len(self._orders) + 1
        self.logger = get_logger("banksim.standing_orders")

    def _next_id(self) -> str:
        while True:
            order_id = f"{ORDER_ID_PREFIX}{self._counter:06d}"
            self._counter += 1
            if order_id not in self._orders:
                return order_id

    def _normalize_day(self, execution_day: int) -> int:
        """Reject days below 1; pull 29-31 down to the last day every month has"""
        if execution_day < 1 or execution_day > 31:
            raise ValidationError("Execution day must be between 1 and 31")
        return min(execution_day, self.config.max_execution_day)

    def _check_source(self, owner_id: str, source_iban: str) -> None:
        source = self.accounts.get_account(source_iban)
        if not source.is_owner(owner_id):
            raise ValidationError(f"Customer {owner_id} does not own account {source_iban}")

    def _register(self, order: StandingOrder) -> StandingOrder:
        self._orders[order.id] = order
        log_action(
            self.logger, "info", f"Standing order created: {order.id}",
            action="create_standing_order", resource=f"standing_order:{order.id}",
            simulated_date=order.created_on,
            extra={
                "order_type": order.order_type.value,
                "owner_id": order.owner_id,
                "next_execution_date": order.next_execution_date.isoformat() if order.next_execution_date else None
            }
        )
        return order

    def create_transfer_order(
        self,
        owner_id: str,
        source_iban: str,
        destination_iban: str,
        amount: Decimal,
        frequency_months: int,
        execution_day: int,
        start_date: date,
        description: str = ""
    ) -> StandingOrder:
        """
        Create a recurring transfer.

        Args:
            owner_id: Customer giving the instruction (must own the source)
            source_iban: Account debited
            destination_iban: Internal account credited
            amount: Positive amount per execution
            frequency_months: Months between executions (>= 1)
            execution_day: Day of month; 29-31 are pulled down to 28
            start_date: Current simulated date; the first execution is after it
            description: Free text copied into the transaction descriptions

        Returns:
            The new ACTIVE order with its first next_execution_date set
        """
        self._check_source(owner_id, source_iban)
        self.accounts.get_account(destination_iban)
        if source_iban == destination_iban:
            raise ValidationError("Source and destination accounts must differ")

        order = StandingOrder(
            id=self._next_id(),
            order_type=OrderType.TRANSFER,
            owner_id=owner_id,
            source_iban=source_iban,
            destination_iban=destination_iban,
            amount=amount,
            frequency_months=frequency_months,
            execution_day=self._normalize_day(execution_day),
            description=description,
            created_on=start_date
        )
        order.schedule_from(start_date)
        return self._register(order)

    def create_bill_payment_order(
        self,
        owner_id: str,
        source_iban: str,
        start_date: date,
        execution_day: int,
        reference_code: Optional[str] = None,
        provider_name: Optional[str] = None,
        amount: Optional[Decimal] = None,
        frequency_months: int = 1,
        description: Optional[str] = None
    ) -> StandingOrder:
        """
        Create an automatic bill payment.

        On each execution date the order pays the matching unpaid bills, or
        the fixed amount when one is given and no bill matches. Periods with
        nothing to pay just move the schedule on.
        """
        self._check_source(owner_id, source_iban)

        order = StandingOrder(
            id=self._next_id(),
            order_type=OrderType.BILL_PAYMENT,
            owner_id=owner_id,
            source_iban=source_iban,
            reference_code=reference_code,
            provider_name=provider_name,
            amount=amount,
            frequency_months=frequency_months,
            execution_day=self._normalize_day(execution_day),
            description=description or f"Auto-pay bills from {provider_name or reference_code}",
            created_on=start_date
        )
        order.schedule_from(start_date)
        return self._register(order)

    def get_order(self, order_id: str) -> StandingOrder:
        order = self._orders.get(order_id)
        if not order:
            raise EntityNotFoundError(f"Standing order {order_id} not found")
        return order

    def list_orders(self) -> List[StandingOrder]:
        return list(self._orders.values())

    def orders_for_owner(self, owner_id: str) -> List[StandingOrder]:
        return [o for o in self._orders.values() if o.owner_id == owner_id]

    def active_orders_for_owner(self, owner_id: str) -> List[StandingOrder]:
        return [o for o in self._orders.values() if o.owner_id == owner_id and o.is_active]

    def due_transfer_orders(self, current_date: date) -> List[StandingOrder]:
        return [
            o for o in self._orders.values()
            if o.order_type == OrderType.TRANSFER and o.should_execute(current_date)
        ]

    def due_bill_payment_orders(self, current_date: date) -> List[StandingOrder]:
        return [
            o for o in self._orders.values()
            if o.order_type == OrderType.BILL_PAYMENT and o.should_execute(current_date)
        ]

    def pause_order(self, order_id: str) -> StandingOrder:
        order = self.get_order(order_id)
        if order.status != OrderStatus.ACTIVE:
            raise InvalidStateError(f"Only active orders can be paused (status: {order.status.value})")
        order.status = OrderStatus.PAUSED
        return order

    def resume_order(self, order_id: str, current_date: date) -> StandingOrder:
        """Reactivate a paused order; a schedule left in the past restarts after current_date"""
        order = self.get_order(order_id)
        if order.status != OrderStatus.PAUSED:
            raise InvalidStateError(f"Only paused orders can be resumed (status: {order.status.value})")
        order.status = OrderStatus.ACTIVE
        if order.next_execution_date < current_date:
            order.schedule_from(current_date)
        return order

    def cancel_order(self, order_id: str) -> StandingOrder:
        order = self.get_order(order_id)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.COMPLETED):
            raise InvalidStateError(f"Order {order_id} is already {order.status.value}")
        order.status = OrderStatus.CANCELLED
        return order

    def complete_order(self, order_id: str) -> StandingOrder:
        order = self.get_order(order_id)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.COMPLETED):
            raise InvalidStateError(f"Order {order_id} is already {order.status.value}")
        order.status = OrderStatus.COMPLETED
        return order

    def _skip(self, result: SchedulerRunResult, order: StandingOrder, reason: str) -> None:
        result.skipped[order.id] = reason
        log_action(
            self.logger, "warning", f"Standing order {order.id} skipped: {reason}",
            action="skip_standing_order", resource=f"standing_order:{order.id}",
            simulated_date=result.run_date
        )

    def _execute_transfer(self, order: StandingOrder, at: datetime, result: SchedulerRunResult) -> None:
        source = self.accounts.get_account(order.source_iban)
        if source.balance < order.amount:
            self._skip(
                result, order,
                f"insufficient funds ({format_amount(source.balance)} < {format_amount(order.amount)})"
            )
            return

        outgoing, incoming = self.processor.transfer(
            order.source_iban, order.destination_iban, order.amount,
            description=f"Standing Order: {order.description}" if order.description else f"Standing Order {order.id}",
            at=at
        )
        order.record_execution(result.run_date)
        result.executed.append(order.id)
        result.transactions.extend([outgoing, incoming])

    def _execute_bill_payment(self, order: StandingOrder, at: datetime, result: SchedulerRunResult) -> None:
        matching = self.bills.find_unpaid_by_reference(order.reference_code) if order.reference_code else []
        if not matching and order.provider_name:
            matching = self.bills.find_unpaid_by_provider(order.provider_name, owner_id=order.owner_id)

        paid = []
        if matching:
            for bill in matching:
                source = self.accounts.get_account(order.source_iban)
                if source.balance < bill.amount:
                    log_action(
                        self.logger, "warning",
                        f"Standing order {order.id} cannot afford bill {bill.id}",
                        action="skip_bill", resource=f"bill:{bill.id}",
                        simulated_date=result.run_date,
                        extra={"balance": str(source.balance), "amount": str(bill.amount)}
                    )
                    continue
                try:
                    paid.append(self.processor.pay_bill_from_order(bill.id, order.source_iban, at, order.id))
                except Exception as e:
                    self.logger.warning(f"Standing order {order.id} failed on bill {bill.id}: {e}", exc_info=True)
        elif order.amount is not None:
            source = self.accounts.get_account(order.source_iban)
            if source.balance < order.amount:
                self._skip(result, order, "insufficient funds for fixed auto-pay")
                return
            paid.append(self.processor.auto_pay(
                order.source_iban, order.amount, order.provider_name or "",
                order.reference_code or "", at, order.id
            ))
        else:
            # Nothing to pay this period
            order.advance_schedule()
            return

        if not paid:
            self._skip(result, order, "no matching bill could be paid")
            return

        order.record_execution(result.run_date)
        result.executed.append(order.id)
        result.transactions.extend(paid)

    def execute_due_orders(self, current_date: date) -> SchedulerRunResult:
        """
        Run every due order for one simulated day: transfers first, then bill
        payments. A failure on one order is logged and never stops the pass.
        """
        result = SchedulerRunResult(run_date=current_date)
        at = datetime.combine(current_date, time.min)

        for order in self.due_transfer_orders(current_date):
            try:
                self._execute_transfer(order, at, result)
            except Exception as e:
                result.failed[order.id] = str(e)
                self.logger.warning(f"Standing order {order.id} failed: {e}", exc_info=True)

        for order in self.due_bill_payment_orders(current_date):
            try:
                self._execute_bill_payment(order, at, result)
            except Exception as e:
                result.failed[order.id] = str(e)
                self.logger.warning(f"Bill payment order {order.id} failed: {e}", exc_info=True)

        if result.executed or result.skipped or result.failed:
            log_action(
                self.logger, "info", f"Scheduler pass for {current_date.isoformat()}",
                action="execute_due_orders", simulated_date=current_date,
                extra={
                    "executed": len(result.executed),
                    "skipped": len(result.skipped),
                    "failed": len(result.failed)
                }
            )
        return result
