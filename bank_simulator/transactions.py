"""
Transaction Processing Module

Every balance change in the simulator goes through TransactionProcessor, which
performs the mutation on the account and appends exactly one record per
affected account to the TransactionLedger. Records carry the balance of the
affected account taken after the mutation, so the ledger replays the history
of each account in id order.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
from enum import Enum

from .accounts import Account, AccountManager
from .bills import Bill, BillManager, BillStatus
from .config import SimulatorConfig, get_config
from .currency import ZERO, format_amount
from .errors import (
    ValidationError, InactiveAccountError, InsufficientFundsError,
    EntityNotFoundError, InvalidStateError, ServiceUnavailableError
)
from .gateway import (
    TransferGateway, TransferMechanism, TransferResult, RecipientDetails, create_gateway
)
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of ledger events"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    BILL_PAYMENT = "bill_payment"
    INTEREST = "interest"
    MAINTENANCE_FEE = "maintenance_fee"
    SEPA_TRANSFER = "sepa_transfer"
    SWIFT_TRANSFER = "swift_transfer"


class TransactionStatus(Enum):
    """States of a recorded transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


EXTERNAL_TYPES = {
    TransferMechanism.SEPA: TransactionType.SEPA_TRANSFER,
    TransferMechanism.SWIFT: TransactionType.SWIFT_TRANSFER,
}


@dataclass
class Transaction:
    """
    One ledger record.

    amount is the principal moved; fee is charged on top of it, so the
    affected balance changed by amount + fee for debits.
    """
    id: int
    timestamp: datetime
    amount: Decimal
    transaction_type: TransactionType
    description: str
    balance_after: Decimal
    account_iban: str
    from_iban: Optional[str] = None
    to_iban: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    fee: Decimal = ZERO
    external_reference: Optional[str] = None
    bill_id: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.amount + self.fee

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED


class TransactionLedger:
    """Append-only transaction log with strictly increasing integer ids"""

    def __init__(self, transactions: Optional[List[Transaction]] = None):
        self._transactions: List[Transaction] = sorted(transactions or [], key=lambda t: t.id)
        self._by_id: Dict[int, Transaction] = {t.id: t for t in self._transactions}
        self._next_id = self._transactions[-1].id + 1 if self._transactions else 1

    def record(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        account: Account,
        description: str,
        timestamp: datetime,
        from_iban: Optional[str] = None,
        to_iban: Optional[str] = None,
        fee: Decimal = ZERO,
        external_reference: Optional[str] = None,
        bill_id: Optional[str] = None
    ) -> Transaction:
        """Append a completed record snapshotting account's current balance"""
        transaction = Transaction(
            id=self._next_id,
            timestamp=timestamp,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            balance_after=account.balance,
            account_iban=account.iban,
            from_iban=from_iban,
            to_iban=to_iban,
            fee=fee,
            external_reference=external_reference,
            bill_id=bill_id
        )
        self._next_id += 1
        self._transactions.append(transaction)
        self._by_id[transaction.id] = transaction
        return transaction

    def set_status(self, transaction_id: int, status: TransactionStatus) -> Transaction:
        """Status correction; the only mutation a record ever sees"""
        transaction = self.get(transaction_id)
        transaction.status = status
        return transaction

    def get(self, transaction_id: int) -> Transaction:
        transaction = self._by_id.get(transaction_id)
        if not transaction:
            raise EntityNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def all(self) -> List[Transaction]:
        return list(self._transactions)

    def for_account(self, iban: str) -> List[Transaction]:
        return [t for t in self._transactions if t.account_iban == iban]

    def recent_for_account(self, iban: str, limit: int = 10) -> List[Transaction]:
        """Latest records of an account, newest first"""
        return list(reversed(self.for_account(iban)))[:limit]

    def of_type(self, transaction_type: TransactionType) -> List[Transaction]:
        return [t for t in self._transactions if t.transaction_type == transaction_type]

    def __len__(self) -> int:
        return len(self._transactions)


class TransactionProcessor:
    """
    Performs balance-changing operations and records them.

    Every operation validates before it mutates: a raised error means no
    balance moved and nothing was recorded.
    """

    def __init__(
        self,
        accounts: AccountManager,
        bills: BillManager,
        ledger: TransactionLedger,
        gateway: Optional[TransferGateway] = None,
        config: Optional[SimulatorConfig] = None
    ):
        self.accounts = accounts
        self.bills = bills
        self.ledger = ledger
        self.config = config or get_config()
        self.gateway = gateway or create_gateway(self.config)
        self.logger = get_logger("banksim.transactions")

    @staticmethod
    def _positive(amount: Decimal, operation: str) -> None:
        if not isinstance(amount, Decimal):
            raise ValidationError(f"{operation} amount must be a Decimal")
        if amount <= ZERO:
            raise ValidationError(f"{operation} amount must be positive")

    @staticmethod
    def _active(account: Account) -> Account:
        if not account.is_active:
            raise InactiveAccountError(account.iban, account.status.value)
        return account

    @staticmethod
    def _require_funds(account: Account, amount: Decimal) -> None:
        if account.balance < amount:
            raise InsufficientFundsError(account.iban, amount, account.balance)

    def _log(self, message: str, transaction: Transaction, **extra) -> None:
        log_action(
            self.logger, "info", message,
            action=transaction.transaction_type.value,
            resource=f"account:{transaction.account_iban}",
            simulated_date=transaction.timestamp.date(),
            extra={"transaction_id": transaction.id, "amount": str(transaction.amount), **extra}
        )

    def deposit(self, iban: str, amount: Decimal, description: Optional[str] = None,
                at: Optional[datetime] = None) -> Transaction:
        """Credit an account"""
        self._positive(amount, "Deposit")
        account = self._active(self.accounts.get_account(iban))
        account.deposit(amount)
        transaction = self.ledger.record(
            TransactionType.DEPOSIT, amount, account,
            description or "Cash deposit", at or datetime.now(),
            to_iban=iban
        )
        self._log(f"Deposit of {format_amount(amount)} to {iban}", transaction)
        return transaction

    def withdraw(self, iban: str, amount: Decimal, description: Optional[str] = None,
                 at: Optional[datetime] = None) -> Transaction:
        """Debit an account"""
        self._positive(amount, "Withdrawal")
        account = self._active(self.accounts.get_account(iban))
        account.withdraw(amount)
        transaction = self.ledger.record(
            TransactionType.WITHDRAWAL, amount, account,
            description or "Cash withdrawal", at or datetime.now(),
            from_iban=iban
        )
        self._log(f"Withdrawal of {format_amount(amount)} from {iban}", transaction)
        return transaction

    def transfer(self, from_iban: str, to_iban: str, amount: Decimal,
                 description: Optional[str] = None,
                 at: Optional[datetime] = None) -> Tuple[Transaction, Transaction]:
        """
        Move funds between two internal accounts.

        Returns:
            (outgoing record on the source, incoming record on the destination)
        """
        self._positive(amount, "Transfer")
        if from_iban == to_iban:
            raise ValidationError("Cannot transfer to the same account")
        source = self._active(self.accounts.get_account(from_iban))
        destination = self._active(self.accounts.get_account(to_iban))
        self._require_funds(source, amount)

        at = at or datetime.now()
        source.withdraw(amount)
        destination.deposit(amount)
        outgoing = self.ledger.record(
            TransactionType.TRANSFER_OUT, amount, source,
            description or f"Transfer to {to_iban}", at,
            from_iban=from_iban, to_iban=to_iban
        )
        incoming = self.ledger.record(
            TransactionType.TRANSFER_IN, amount, destination,
            description or f"Transfer from {from_iban}", at,
            from_iban=from_iban, to_iban=to_iban
        )
        self._log(f"Transfer of {format_amount(amount)} {from_iban} -> {to_iban}", outgoing)
        return outgoing, incoming

    def _issuer_account(self, bill: Bill) -> Optional[Account]:
        for account in self.accounts.business_accounts_for_owner(bill.issuer_id):
            if account.is_active:
                return account
        return None

    def _settle_bill(self, bill: Bill, payer: Account, fee: Decimal,
                     description: str, at: datetime) -> Transaction:
        """Debit the payer, mark the bill paid and credit the issuer"""
        payer.withdraw(bill.amount + fee)
        bill.mark_paid(at)
        payment = self.ledger.record(
            TransactionType.BILL_PAYMENT, bill.amount, payer, description, at,
            from_iban=payer.iban, fee=fee, bill_id=bill.id
        )

        issuer_account = self._issuer_account(bill)
        if issuer_account is not None:
            issuer_account.deposit(bill.amount)
            self.ledger.record(
                TransactionType.TRANSFER_IN, bill.amount, issuer_account,
                f"Bill payment received: {bill.id} (RF: {bill.reference_code})", at,
                from_iban=payer.iban, to_iban=issuer_account.iban, bill_id=bill.id
            )
        else:
            self.logger.warning(f"Issuer {bill.issuer_id} of bill {bill.id} has no active business account")

        self._log(
            f"Bill {bill.id} paid from {payer.iban}", payment,
            bill_id=bill.id, reference_code=bill.reference_code, fee=str(fee)
        )
        return payment

    def _payable_bill(self, bill_id: str) -> Bill:
        bill = self.bills.get_bill(bill_id)
        if not bill.is_open:
            raise InvalidStateError(f"Bill {bill_id} cannot be paid (status: {bill.status.value})")
        return bill

    def pay_bill(self, bill_id: str, iban: str, at: Optional[datetime] = None) -> Transaction:
        """Manual bill payment; the bill-payment fee is charged on top"""
        bill = self._payable_bill(bill_id)
        payer = self._active(self.accounts.get_account(iban))
        fee = self.config.decimal("bill_payment_fee")
        self._require_funds(payer, bill.amount + fee)
        return self._settle_bill(
            bill, payer, fee,
            f"Bill payment: {bill.provider_name} (RF: {bill.reference_code})",
            at or datetime.now()
        )

    def pay_bill_from_order(self, bill_id: str, iban: str, at: datetime,
                            order_id: Optional[str] = None) -> Transaction:
        """Standing-order bill payment; no fee"""
        bill = self._payable_bill(bill_id)
        payer = self._active(self.accounts.get_account(iban))
        self._require_funds(payer, bill.amount)
        label = f"Standing order {order_id}" if order_id else "Standing order"
        # Settles like a manual payment: the issuer's business account is
        # credited too, so paid bills always reach the issuer
        return self._settle_bill(
            bill, payer, ZERO,
            f"{label} bill payment: {bill.provider_name} (RF: {bill.reference_code})",
            at
        )

    def auto_pay(self, iban: str, amount: Decimal, provider_name: str,
                 reference_code: str, at: datetime,
                 order_id: Optional[str] = None) -> Transaction:
        """Fixed-amount standing-order payment with no matching bill"""
        self._positive(amount, "Auto-pay")
        payer = self._active(self.accounts.get_account(iban))
        self._require_funds(payer, amount)
        payer.withdraw(amount)
        label = f"Standing order {order_id}" if order_id else "Standing order"
        transaction = self.ledger.record(
            TransactionType.BILL_PAYMENT, amount, payer,
            f"{label} auto-pay, no matching bill: {provider_name} (RF: {reference_code})", at,
            from_iban=iban
        )
        log_action(
            self.logger, "warning", f"Unmatched auto-pay of {format_amount(amount)} from {iban}",
            action="auto_pay", resource=f"account:{iban}", simulated_date=at.date(),
            extra={"order_id": order_id, "provider_name": provider_name, "reference_code": reference_code}
        )
        return transaction

    def refund_bill_payment(self, transaction_id: int,
                            previous_status: BillStatus = BillStatus.UNPAID,
                            at: Optional[datetime] = None) -> Transaction:
        """
        Compensate a bill payment: refund amount and fee, take back the
        issuer credit and reopen the bill.

        Returns:
            The refund record on the payer's account
        """
        payment = self.ledger.get(transaction_id)
        if payment.transaction_type != TransactionType.BILL_PAYMENT or not payment.bill_id:
            raise ValidationError(f"Transaction {transaction_id} is not a bill payment")
        if not payment.is_completed:
            raise InvalidStateError(f"Transaction {transaction_id} was already refunded")

        bill = self.bills.get_bill(payment.bill_id)
        payer = self._active(self.accounts.get_account(payment.account_iban))
        credits = [
            t for t in self.ledger.all()
            if t.bill_id == bill.id and t.transaction_type == TransactionType.TRANSFER_IN and t.is_completed
        ]
        for credit in credits:
            issuer_account = self._active(self.accounts.get_account(credit.account_iban))
            self._require_funds(issuer_account, credit.amount)

        self.bills.reset_payment(bill.id, previous_status)
        at = at or datetime.now()
        for credit in credits:
            issuer_account = self.accounts.get_account(credit.account_iban)
            issuer_account.withdraw(credit.amount)
            self.ledger.record(
                TransactionType.TRANSFER_OUT, credit.amount, issuer_account,
                f"Bill payment refunded: {bill.id} (RF: {bill.reference_code})", at,
                from_iban=issuer_account.iban, to_iban=payer.iban, bill_id=bill.id
            )
            self.ledger.set_status(credit.id, TransactionStatus.CANCELLED)

        payer.deposit(payment.total)
        refund = self.ledger.record(
            TransactionType.DEPOSIT, payment.total, payer,
            f"Refund of bill payment: {bill.provider_name} (RF: {bill.reference_code})", at,
            to_iban=payer.iban, bill_id=bill.id
        )
        self.ledger.set_status(payment.id, TransactionStatus.CANCELLED)
        self._log(f"Bill payment {transaction_id} refunded", refund, bill_id=bill.id)
        return refund

    def record_interest(self, iban: str, at: datetime) -> Optional[Transaction]:
        """Realise accrued interest; records only a non-zero amount"""
        account = self.accounts.get_account(iban)
        applied = account.apply_monthly_interest()
        if applied <= ZERO:
            return None
        return self.ledger.record(
            TransactionType.INTEREST, applied, account, "Monthly interest", at,
            to_iban=iban
        )

    def record_maintenance_fee(self, iban: str, at: datetime) -> Optional[Transaction]:
        """Charge the business maintenance fee; records only a non-zero charge"""
        account = self.accounts.get_account(iban)
        charged = account.apply_maintenance_fee()
        if charged <= ZERO:
            return None
        if charged < account.maintenance_fee:
            self.logger.warning(
                f"Maintenance fee on {iban} capped at available balance {format_amount(charged)}"
            )
        return self.ledger.record(
            TransactionType.MAINTENANCE_FEE, charged, account, "Monthly maintenance fee", at,
            from_iban=iban
        )

    def external_transfer(
        self,
        iban: str,
        amount: Decimal,
        recipient: RecipientDetails,
        description: str = "",
        at: Optional[datetime] = None
    ) -> Tuple[TransferResult, Optional[Transaction]]:
        """
        Send funds to another bank over SEPA or SWIFT.

        The gateway verdict is final. On failure nothing moves and nothing is
        recorded; on success the source pays amount plus the mechanism fee.

        Returns:
            (gateway result, the recorded transaction or None on failure)
        """
        self._positive(amount, "Transfer")
        account = self._active(self.accounts.get_account(iban))
        mechanism = recipient.mechanism
        fee = self.config.decimal("sepa_fee" if mechanism == TransferMechanism.SEPA else "swift_fee")
        self._require_funds(account, amount + fee)

        at = at or datetime.now()
        if recipient.requested_date is None:
            recipient = replace(recipient, requested_date=at.date())

        try:
            result = self.gateway.execute_transfer(amount, recipient)
        except ServiceUnavailableError as e:
            result = TransferResult(success=False, message=str(e))

        label = mechanism.value.upper()
        if not result.success:
            log_action(
                self.logger, "warning", f"{label} transfer from {iban} failed: {result.message}",
                action=f"{mechanism.value}_transfer", resource=f"account:{iban}",
                simulated_date=at.date(), extra={"amount": str(amount), "to": recipient.account}
            )
            return result, None

        account.withdraw(amount + fee)
        transaction = self.ledger.record(
            EXTERNAL_TYPES[mechanism], amount, account,
            f"{label} transfer to {recipient.account} - {description} [API TxID: {result.transaction_id}]",
            at, from_iban=iban, to_iban=recipient.account, fee=fee,
            external_reference=result.transaction_id
        )
        self._log(
            f"{label} transfer of {format_amount(amount)} from {iban}", transaction,
            fee=str(fee), gateway_id=result.transaction_id
        )
        return result, transaction
