"""
Bill Management Module

Bills are issued by business customers to individual customers and age from
UNPAID to OVERDUE as the simulated calendar passes their due date. Each bill
carries an RF reference code that standing orders use to find it.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .currency import ZERO
from .errors import ValidationError, EntityNotFoundError, InvalidStateError
from .logging_config import get_logger, log_action


class BillStatus(Enum):
    """Bill lifecycle states"""
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


OPEN_STATUSES = (BillStatus.UNPAID, BillStatus.OVERDUE)

BILL_ID_PREFIX = "BILL"
RF_PREFIX = "RF"
RF_COUNTER_START = 1000


@dataclass
class Bill:
    """Bill owed by owner_id to issuer_id"""
    id: str
    provider_name: str
    amount: Decimal
    due_date: date
    reference_code: str
    owner_id: str
    issuer_id: str
    status: BillStatus = BillStatus.UNPAID
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.provider_name:
            raise ValidationError("Provider name is required")
        if not self.reference_code:
            raise ValidationError("Reference code is required")
        if self.amount <= ZERO:
            raise ValidationError("Bill amount must be positive")

    @property
    def is_open(self) -> bool:
        """UNPAID or OVERDUE, i.e. still payable"""
        return self.status in OPEN_STATUSES

    def is_overdue(self, current_date: date) -> bool:
        return self.status == BillStatus.UNPAID and current_date > self.due_date

    def check_and_update_overdue(self, current_date: date) -> bool:
        """
        Move UNPAID to OVERDUE once the due date has passed.

        Idempotent; any other status is left alone.

        Returns:
            True if the bill transitioned on this call
        """
        if self.is_overdue(current_date):
            self.status = BillStatus.OVERDUE
            return True
        return False

    def mark_paid(self, paid_at: datetime) -> None:
        if not self.is_open:
            raise InvalidStateError(f"Bill {self.id} cannot be paid (status: {self.status.value})")
        self.status = BillStatus.PAID
        self.paid_at = paid_at


class BillManager:
    """Registry of bills with issuance, lookup, payment marking and aging"""

    def __init__(self, bills: Optional[List[Bill]] = None):
        self._bills: Dict[str, Bill] = {b.id: b for b in (bills or [])}
        self._bill_counter = len(self._bills) + 1
        self._rf_counter = RF_COUNTER_START + len(self._bills)
        self.logger = get_logger("banksim.bills")

    def _next_bill_id(self) -> str:
        while True:
            bill_id = f"{BILL_ID_PREFIX}{self._bill_counter:06d}"
            self._bill_counter += 1
            if bill_id not in self._bills:
                return bill_id

    def _reference_taken(self, reference_code: str) -> bool:
        return any(b.reference_code == reference_code for b in self._bills.values())

    def _next_reference(self) -> str:
        while True:
            reference = f"{RF_PREFIX}{self._rf_counter:08d}"
            self._rf_counter += 1
            if not self._reference_taken(reference):
                return reference

    def create_bill(
        self,
        owner_id: str,
        issuer_id: str,
        provider_name: str,
        amount: Decimal,
        due_date: date,
        reference_code: Optional[str] = None
    ) -> Bill:
        """
        Issue a new bill.

        Args:
            owner_id: Customer who owes the bill
            issuer_id: Business customer issuing it
            provider_name: Name shown to the payer and used for provider matching
            amount: Positive amount, fixed for the life of the bill
            due_date: Last day before the bill becomes overdue
            reference_code: RF code; generated when omitted

        Returns:
            The new UNPAID bill
        """
        if reference_code is None:
            reference_code = self._next_reference()
        elif self._reference_taken(reference_code):
            raise ValidationError(f"Reference code {reference_code} is already in use")

        bill = Bill(
            id=self._next_bill_id(),
            provider_name=provider_name,
            amount=amount,
            due_date=due_date,
            reference_code=reference_code,
            owner_id=owner_id,
            issuer_id=issuer_id
        )
        self._bills[bill.id] = bill

        log_action(
            self.logger, "info", f"Bill issued: {bill.id}",
            action="create_bill", resource=f"bill:{bill.id}",
            extra={
                "reference_code": reference_code,
                "owner_id": owner_id,
                "issuer_id": issuer_id,
                "amount": str(amount),
                "due_date": due_date.isoformat()
            }
        )
        return bill

    def get_bill(self, bill_id: str) -> Bill:
        bill = self._bills.get(bill_id)
        if not bill:
            raise EntityNotFoundError(f"Bill {bill_id} not found")
        return bill

    def list_bills(self) -> List[Bill]:
        return list(self._bills.values())

    def find_unpaid_by_reference(self, reference_code: str) -> List[Bill]:
        return [
            b for b in self._bills.values()
            if b.reference_code == reference_code and b.is_open
        ]

    def find_unpaid_by_provider(self, provider_name: str, owner_id: Optional[str] = None) -> List[Bill]:
        """Open bills whose provider matches case-insensitively, optionally for one owner"""
        wanted = provider_name.casefold()
        return [
            b for b in self._bills.values()
            if b.provider_name.casefold() == wanted and b.is_open
            and (owner_id is None or b.owner_id == owner_id)
        ]

    def bills_for_owner(self, owner_id: str) -> List[Bill]:
        return [b for b in self._bills.values() if b.owner_id == owner_id]

    def unpaid_bills_for_owner(self, owner_id: str) -> List[Bill]:
        return [b for b in self._bills.values() if b.owner_id == owner_id and b.is_open]

    def bills_issued_by(self, issuer_id: str) -> List[Bill]:
        return [b for b in self._bills.values() if b.issuer_id == issuer_id]

    def mark_paid(self, bill_id: str, paid_at: datetime) -> Bill:
        bill = self.get_bill(bill_id)
        bill.mark_paid(paid_at)
        return bill

    def cancel_bill(self, bill_id: str) -> Bill:
        """Cancel an UNPAID bill"""
        bill = self.get_bill(bill_id)
        if bill.status != BillStatus.UNPAID:
            raise InvalidStateError(f"Only unpaid bills can be cancelled (status: {bill.status.value})")
        bill.status = BillStatus.CANCELLED
        log_action(
            self.logger, "info", f"Bill cancelled: {bill_id}",
            action="cancel_bill", resource=f"bill:{bill_id}"
        )
        return bill

    def reset_payment(self, bill_id: str, previous_status: BillStatus = BillStatus.UNPAID) -> Bill:
        """
        Undo a payment, putting the bill back into the open state it had.

        This is the only way out of PAID and is used when a payment is refunded.
        """
        bill = self.get_bill(bill_id)
        if bill.status != BillStatus.PAID:
            raise InvalidStateError(f"Bill {bill_id} is not paid")
        if previous_status not in OPEN_STATUSES:
            raise ValidationError("A reset bill must return to UNPAID or OVERDUE")
        bill.status = previous_status
        bill.paid_at = None
        return bill

    def update_overdue_bills(self, current_date: date) -> List[Bill]:
        """
        Age every bill against current_date.

        Returns:
            Bills that became OVERDUE on this pass
        """
        transitioned = [b for b in self._bills.values() if b.check_and_update_overdue(current_date)]
        for bill in transitioned:
            log_action(
                self.logger, "info", f"Bill {bill.id} is overdue",
                action="bill_overdue", resource=f"bill:{bill.id}",
                simulated_date=current_date,
                extra={"due_date": bill.due_date.isoformat(), "amount": str(bill.amount)}
            )
        return transitioned
