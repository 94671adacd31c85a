"""
Test suite for transactions module

Tests deposits, withdrawals, internal transfers, bill payments and refunds,
external SEPA/SWIFT transfers and the ledger records each of them leaves.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime

from bank_simulator.accounts import AccountStatus
from bank_simulator.bills import BillStatus
from bank_simulator.currency import ZERO
from bank_simulator.errors import (
    ValidationError, InactiveAccountError, InsufficientFundsError,
    EntityNotFoundError, InvalidStateError, ServiceUnavailableError
)
from bank_simulator.gateway import (
    TransferGateway, TransferMechanism, RecipientDetails, SimulatedTransferGateway
)
from bank_simulator.simulation import SimulationContext
from bank_simulator.transactions import (
    Transaction, TransactionLedger, TransactionStatus, TransactionType
)


AT = datetime(2024, 3, 1, 10, 0)


class UnreachableGateway(TransferGateway):
    """Gateway whose service is down"""

    def execute_transfer(self, amount, recipient):
        raise ServiceUnavailableError("Transfer service unavailable: connection refused")


class TestTransactionProcessor:
    """Test internal balance-changing operations"""

    def setup_method(self):
        """Set up test fixtures"""
        self.context = SimulationContext.build(
            current_date=date(2024, 3, 1),
            gateway=SimulatedTransferGateway(success_rate=1.0)
        )
        self.processor = self.context.processor
        self.ledger = self.context.ledger
        accounts = self.context.accounts
        self.john = accounts.open_personal_account("IND0001", Decimal("1000.00"))
        self.maria = accounts.open_personal_account("IND0002", Decimal("100.00"))

    def test_deposit(self):
        transaction = self.processor.deposit(self.john.iban, Decimal("250.00"), at=AT)

        assert self.john.balance == Decimal("1250.00")
        assert transaction.transaction_type == TransactionType.DEPOSIT
        assert transaction.balance_after == Decimal("1250.00")
        assert transaction.description == "Cash deposit"
        assert transaction.timestamp == AT
        assert transaction.status == TransactionStatus.COMPLETED

    def test_withdraw(self):
        transaction = self.processor.withdraw(self.john.iban, Decimal("200.00"), "ATM", at=AT)

        assert self.john.balance == Decimal("800.00")
        assert transaction.transaction_type == TransactionType.WITHDRAWAL
        assert transaction.balance_after == Decimal("800.00")
        assert transaction.description == "ATM"

    def test_withdraw_insufficient_funds_records_nothing(self):
        with pytest.raises(InsufficientFundsError):
            self.processor.withdraw(self.maria.iban, Decimal("100.01"), at=AT)
        assert self.maria.balance == Decimal("100.00")
        assert len(self.ledger) == 0

    def test_amount_must_be_decimal(self):
        with pytest.raises(ValidationError):
            self.processor.deposit(self.john.iban, 10.0, at=AT)

    def test_unknown_account(self):
        with pytest.raises(EntityNotFoundError):
            self.processor.deposit("GR100999999999999999", Decimal("10.00"), at=AT)

    def test_transfer_records_both_sides(self):
        outgoing, incoming = self.processor.transfer(
            self.john.iban, self.maria.iban, Decimal("50.00"), at=AT
        )

        assert self.john.balance == Decimal("950.00")
        assert self.maria.balance == Decimal("150.00")

        assert outgoing.transaction_type == TransactionType.TRANSFER_OUT
        assert outgoing.account_iban == self.john.iban
        assert outgoing.balance_after == Decimal("950.00")
        assert outgoing.description == f"Transfer to {self.maria.iban}"

        assert incoming.transaction_type == TransactionType.TRANSFER_IN
        assert incoming.account_iban == self.maria.iban
        assert incoming.balance_after == Decimal("150.00")
        assert incoming.amount == outgoing.amount
        assert incoming.id > outgoing.id

    def test_transfer_conserves_money(self):
        total_before = self.john.balance + self.maria.balance
        self.processor.transfer(self.john.iban, self.maria.iban, Decimal("333.33"), at=AT)
        self.processor.transfer(self.maria.iban, self.john.iban, Decimal("0.01"), at=AT)
        assert self.john.balance + self.maria.balance == total_before

    def test_transfer_insufficient_funds_is_atomic(self):
        with pytest.raises(InsufficientFundsError):
            self.processor.transfer(self.maria.iban, self.john.iban, Decimal("500.00"), at=AT)
        assert self.maria.balance == Decimal("100.00")
        assert self.john.balance == Decimal("1000.00")
        assert len(self.ledger) == 0

    def test_transfer_to_inactive_account_is_atomic(self):
        self.context.accounts.freeze(self.maria.iban)
        with pytest.raises(InactiveAccountError):
            self.processor.transfer(self.john.iban, self.maria.iban, Decimal("10.00"), at=AT)
        assert self.john.balance == Decimal("1000.00")
        assert self.maria.status == AccountStatus.FROZEN
        assert len(self.ledger) == 0

    def test_transfer_to_same_account_rejected(self):
        with pytest.raises(ValidationError):
            self.processor.transfer(self.john.iban, self.john.iban, Decimal("10.00"), at=AT)


class TestBillPayments:
    """Test manual and automatic bill payments"""

    def setup_method(self):
        """Set up test fixtures"""
        self.context = SimulationContext.build(
            current_date=date(2024, 3, 1),
            gateway=SimulatedTransferGateway(success_rate=1.0)
        )
        self.processor = self.context.processor
        self.ledger = self.context.ledger
        accounts = self.context.accounts
        self.payer = accounts.open_personal_account("IND0001", Decimal("100.00"))
        self.issuer = accounts.open_business_account("BUS0002", Decimal("1000.00"))
        self.bill = self.context.bills.create_bill(
            owner_id="IND0001",
            issuer_id="BUS0002",
            provider_name="Greek Utilities Co",
            amount=Decimal("85.50"),
            due_date=date(2024, 3, 16),
            reference_code="RF00001234"
        )

    def test_pay_bill_charges_fee(self):
        payment = self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)

        assert self.payer.balance == Decimal("14.00")
        assert payment.transaction_type == TransactionType.BILL_PAYMENT
        assert payment.amount == Decimal("85.50")
        assert payment.fee == Decimal("0.50")
        assert payment.total == Decimal("86.00")
        assert payment.bill_id == self.bill.id
        assert payment.description == "Bill payment: Greek Utilities Co (RF: RF00001234)"
        assert self.bill.status == BillStatus.PAID
        assert self.bill.paid_at == AT

    def test_pay_bill_credits_issuer(self):
        self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)

        assert self.issuer.balance == Decimal("1085.50")
        credit = self.ledger.for_account(self.issuer.iban)[-1]
        assert credit.transaction_type == TransactionType.TRANSFER_IN
        assert credit.amount == Decimal("85.50")
        assert credit.bill_id == self.bill.id

    def test_pay_bill_needs_room_for_fee(self):
        """85.50 is affordable but 86.00 is not"""
        self.processor.withdraw(self.payer.iban, Decimal("14.30"), at=AT)
        with pytest.raises(InsufficientFundsError):
            self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)
        assert self.bill.status == BillStatus.UNPAID
        assert self.payer.balance == Decimal("85.70")

    def test_paid_bill_cannot_be_paid_again(self):
        self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)
        self.processor.deposit(self.payer.iban, Decimal("100.00"), at=AT)
        with pytest.raises(InvalidStateError):
            self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)

    def test_order_payment_has_no_fee(self):
        payment = self.processor.pay_bill_from_order(self.bill.id, self.payer.iban, AT, "SO000001")
        assert payment.fee == ZERO
        assert self.payer.balance == Decimal("14.50")
        assert payment.description.startswith("Standing order SO000001 bill payment")

    def test_refund_restores_everything(self):
        payment = self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)
        refund = self.processor.refund_bill_payment(payment.id, at=AT)

        assert self.payer.balance == Decimal("100.00")
        assert self.issuer.balance == Decimal("1000.00")
        assert self.bill.status == BillStatus.UNPAID
        assert self.bill.paid_at is None
        assert refund.transaction_type == TransactionType.DEPOSIT
        assert refund.amount == Decimal("86.00")
        assert self.ledger.get(payment.id).status == TransactionStatus.CANCELLED

        credits = [t for t in self.ledger.for_account(self.issuer.iban)
                   if t.transaction_type == TransactionType.TRANSFER_IN]
        assert all(t.status == TransactionStatus.CANCELLED for t in credits)

    def test_refund_twice_rejected(self):
        payment = self.processor.pay_bill(self.bill.id, self.payer.iban, at=AT)
        self.processor.refund_bill_payment(payment.id, at=AT)
        with pytest.raises(InvalidStateError):
            self.processor.refund_bill_payment(payment.id, at=AT)

    def test_refund_requires_bill_payment(self):
        deposit = self.processor.deposit(self.payer.iban, Decimal("1.00"), at=AT)
        with pytest.raises(ValidationError):
            self.processor.refund_bill_payment(deposit.id, at=AT)

    def test_auto_pay_without_bill(self):
        transaction = self.processor.auto_pay(
            self.payer.iban, Decimal("30.00"), "Water Co", "RF00009999", AT, "SO000002"
        )
        assert self.payer.balance == Decimal("70.00")
        assert transaction.transaction_type == TransactionType.BILL_PAYMENT
        assert transaction.bill_id is None
        assert "no matching bill" in transaction.description


class TestMonthlyPostings:
    """Test interest and maintenance fee records"""

    def setup_method(self):
        """Set up test fixtures"""
        self.context = SimulationContext.build(
            current_date=date(2024, 3, 1),
            gateway=SimulatedTransferGateway(success_rate=1.0)
        )
        self.processor = self.context.processor

    def test_interest_recorded(self):
        account = self.context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        for _ in range(30):
            account.accrue_interest()

        transaction = self.processor.record_interest(account.iban, AT)
        assert transaction.transaction_type == TransactionType.INTEREST
        assert transaction.amount == Decimal("0.821919")
        assert transaction.balance_after == Decimal("1000.821919")

    def test_zero_interest_not_recorded(self):
        account = self.context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        assert self.processor.record_interest(account.iban, AT) is None
        assert len(self.context.ledger) == 0

    def test_fee_capped_and_recorded(self):
        account = self.context.accounts.open_business_account("BUS0001", Decimal("10.00"))
        transaction = self.processor.record_maintenance_fee(account.iban, AT)
        assert transaction.transaction_type == TransactionType.MAINTENANCE_FEE
        assert transaction.amount == Decimal("10.00")
        assert transaction.balance_after == ZERO
        assert self.processor.record_maintenance_fee(account.iban, AT) is None


class TestExternalTransfers:
    """Test SEPA and SWIFT transfers through the gateway"""

    def setup_method(self):
        """Set up test fixtures"""
        self.context = SimulationContext.build(
            current_date=date(2024, 3, 1),
            gateway=SimulatedTransferGateway(success_rate=1.0)
        )
        self.processor = self.context.processor
        self.account = self.context.accounts.open_personal_account("IND0001", Decimal("1000.00"))
        self.sepa = RecipientDetails(TransferMechanism.SEPA, "DE89370400440532013000", "Hans Muller")
        self.swift = RecipientDetails(TransferMechanism.SWIFT, "123456789", "John Doe",
                                      bank_code="CHASUS33", country="US")

    def test_sepa_success(self):
        result, transaction = self.processor.external_transfer(
            self.account.iban, Decimal("100.00"), self.sepa, "Rent", at=AT
        )

        assert result.success
        assert self.account.balance == Decimal("898.50")
        assert transaction.transaction_type == TransactionType.SEPA_TRANSFER
        assert transaction.amount == Decimal("100.00")
        assert transaction.fee == Decimal("1.50")
        assert transaction.external_reference == "SEPA-SIM-00000001"
        assert "[API TxID: SEPA-SIM-00000001]" in transaction.description

    def test_swift_fee(self):
        result, transaction = self.processor.external_transfer(
            self.account.iban, Decimal("100.00"), self.swift, at=AT
        )
        assert transaction.transaction_type == TransactionType.SWIFT_TRANSFER
        assert self.account.balance == Decimal("875.00")

    def test_rejected_transfer_moves_nothing(self):
        self.processor.gateway = SimulatedTransferGateway(success_rate=0.0)
        result, transaction = self.processor.external_transfer(
            self.account.iban, Decimal("100.00"), self.sepa, at=AT
        )

        assert not result.success
        assert transaction is None
        assert self.account.balance == Decimal("1000.00")
        assert len(self.context.ledger) == 0

    def test_unreachable_service_is_a_failed_transfer(self):
        self.processor.gateway = UnreachableGateway()
        result, transaction = self.processor.external_transfer(
            self.account.iban, Decimal("100.00"), self.sepa, at=AT
        )
        assert not result.success
        assert "unavailable" in result.message
        assert transaction is None
        assert self.account.balance == Decimal("1000.00")

    def test_insufficient_funds_checked_before_gateway(self):
        """amount + fee must be covered"""
        self.processor.gateway = UnreachableGateway()
        with pytest.raises(InsufficientFundsError):
            self.processor.external_transfer(
                self.account.iban, Decimal("999.00"), self.sepa, at=AT
            )


class TestTransactionLedger:
    """Test ledger ordering and lookups"""

    def make(self, transaction_id, iban="GR100000000000000001"):
        return Transaction(
            id=transaction_id,
            timestamp=AT,
            amount=Decimal("1.00"),
            transaction_type=TransactionType.DEPOSIT,
            description="Cash deposit",
            balance_after=Decimal("1.00"),
            account_iban=iban
        )

    def test_restored_ledger_continues_ids(self):
        ledger = TransactionLedger([self.make(3), self.make(1), self.make(2)])
        assert [t.id for t in ledger.all()] == [1, 2, 3]
        assert ledger._next_id == 4

    def test_recent_for_account_newest_first(self):
        ledger = TransactionLedger([self.make(i) for i in range(1, 16)]
                                   + [self.make(16, iban="GR100000000000000002")])
        recent = ledger.recent_for_account("GR100000000000000001")
        assert [t.id for t in recent] == list(range(15, 5, -1))
        assert [t.id for t in ledger.recent_for_account("GR100000000000000001", limit=2)] == [15, 14]

    def test_get_missing(self):
        with pytest.raises(EntityNotFoundError):
            TransactionLedger().get(1)

    def test_of_type(self):
        ledger = TransactionLedger([self.make(1)])
        assert len(ledger.of_type(TransactionType.DEPOSIT)) == 1
        assert ledger.of_type(TransactionType.INTEREST) == []
