"""
Account Management Module

Owns account balances and the primitive ledger mutations: deposit, withdraw,
daily interest accrual, monthly interest realisation and the business
maintenance fee. Personal and business accounts share one record tagged by
AccountType; the maintenance fee exists only on the business variant.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum

from .config import get_config
from .currency import ZERO, format_amount
from .errors import (
    ValidationError, InactiveAccountError, InsufficientFundsError,
    EntityNotFoundError, InvalidStateError
)
from .logging_config import get_logger, log_action


DAYS_PER_YEAR = Decimal('365')
DEFAULT_RATE_PRECISION = 10


class AccountType(Enum):
    """Account variants"""
    PERSONAL = "personal"
    BUSINESS = "business"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"        # Normal operation
    INACTIVE = "inactive"    # Dormant, no mutations
    FROZEN = "frozen"        # Temporarily suspended
    CLOSED = "closed"        # Permanently closed


# Country code + variant code prefixes of generated IBANs
IBAN_COUNTRY = "GR"
IBAN_VARIANT_CODES = {
    AccountType.PERSONAL: "100",
    AccountType.BUSINESS: "200",
}


def daily_rate_for(annual_rate: Decimal, precision: int = DEFAULT_RATE_PRECISION) -> Decimal:
    """Annual rate / 365, rounded half-up to a fixed number of places"""
    return (annual_rate / DAYS_PER_YEAR).quantize(
        Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP
    )


@dataclass
class Account:
    """
    Bank account holding its own balance and interest accumulator.

    All mutations require status ACTIVE. Interest accrues daily into
    accrued_interest and only reaches the balance on apply_monthly_interest.
    """
    iban: str
    owner_id: str
    account_type: AccountType
    balance: Decimal = ZERO
    status: AccountStatus = AccountStatus.ACTIVE
    interest_rate: Decimal = Decimal('0.01')
    accrued_interest: Decimal = ZERO
    maintenance_fee: Optional[Decimal] = None  # BUSINESS only
    co_owner_ids: List[str] = field(default_factory=list)  # PERSONAL only
    opened_on: Optional[date] = None

    def __post_init__(self):
        if not self.iban:
            raise ValidationError("IBAN is required")
        if not self.owner_id:
            raise ValidationError("Account owner is required")
        if self.balance < ZERO:
            raise ValidationError("Opening balance cannot be negative")
        if self.interest_rate < ZERO:
            raise ValidationError("Interest rate cannot be negative")

        if self.account_type == AccountType.BUSINESS:
            if self.maintenance_fee is None:
                raise ValidationError("Business accounts require a maintenance fee")
            if self.maintenance_fee < ZERO:
                raise ValidationError("Maintenance fee cannot be negative")
            if self.co_owner_ids:
                raise ValidationError("Business accounts cannot have co-owners")
        elif self.maintenance_fee is not None:
            raise ValidationError("Only business accounts carry a maintenance fee")

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def is_business(self) -> bool:
        return self.account_type == AccountType.BUSINESS

    def is_owner(self, customer_id: str) -> bool:
        """Primary owner or co-owner"""
        return customer_id == self.owner_id or customer_id in self.co_owner_ids

    def has_funds(self, amount: Decimal) -> bool:
        return self.balance >= amount

    def _require_active(self) -> None:
        if not self.is_active:
            raise InactiveAccountError(self.iban, self.status.value)

    @staticmethod
    def _require_positive(amount: Decimal, operation: str) -> None:
        if not isinstance(amount, Decimal):
            raise ValidationError(f"{operation} amount must be a Decimal")
        if amount <= ZERO:
            raise ValidationError(f"{operation} amount must be positive")

    def deposit(self, amount: Decimal) -> Decimal:
        """Credit the balance; returns the new balance"""
        self._require_positive(amount, "Deposit")
        self._require_active()
        self.balance += amount
        return self.balance

    def withdraw(self, amount: Decimal) -> Decimal:
        """Debit the balance; returns the new balance"""
        self._require_positive(amount, "Withdrawal")
        self._require_active()
        if self.balance < amount:
            raise InsufficientFundsError(self.iban, amount, self.balance)
        self.balance -= amount
        return self.balance

    def accrue_interest(self, precision: int = DEFAULT_RATE_PRECISION) -> Decimal:
        """
        Accrue one day of interest into the accumulator.

        Must run exactly once per simulated day. The balance is untouched.

        Returns:
            The interest accrued for the day
        """
        self._require_active()
        interest = self.balance * daily_rate_for(self.interest_rate, precision)
        self.accrued_interest += interest
        return interest

    def apply_monthly_interest(self) -> Decimal:
        """
        Move the whole accumulator into the balance.

        Returns:
            Amount realised (zero when nothing had accrued)
        """
        self._require_active()
        applied = self.accrued_interest
        self.balance += applied
        self.accrued_interest = ZERO
        return applied

    def apply_maintenance_fee(self) -> Decimal:
        """
        Charge the monthly maintenance fee, never below a zero balance.

        Returns:
            Amount actually charged (the available balance when short)
        """
        if not self.is_business:
            raise ValidationError("Maintenance fees apply to business accounts only")
        self._require_active()
        charged = min(self.maintenance_fee, self.balance)
        self.balance -= charged
        return charged


class AccountManager:
    """
    Registry of accounts: opening, lookup and lifecycle transitions.

    Balance-changing operations go through TransactionProcessor so that each
    one is recorded; this class only handles the account records themselves.
    """

    def __init__(self, accounts: Optional[List[Account]] = None):
        self._accounts: Dict[str, Account] = {a.iban: a for a in (accounts or [])}
        self._counter = len(self._accounts) + 1
        self.logger = get_logger("banksim.accounts")

    def _generate_iban(self, account_type: AccountType) -> str:
        while True:
            iban = f"{IBAN_COUNTRY}{IBAN_VARIANT_CODES[account_type]}{self._counter:015d}"
            self._counter += 1
            if iban not in self._accounts:
                return iban

    def _open(self, account: Account) -> Account:
        if account.iban in self._accounts:
            raise ValidationError(f"Account {account.iban} already exists")
        self._accounts[account.iban] = account
        log_action(
            self.logger, "info", f"Account opened: {account.iban}",
            action="open_account", resource=f"account:{account.iban}",
            extra={
                "owner_id": account.owner_id,
                "account_type": account.account_type.value,
                "balance": str(account.balance)
            }
        )
        return account

    def open_personal_account(
        self,
        owner_id: str,
        initial_balance: Decimal = ZERO,
        interest_rate: Optional[Decimal] = None,
        opened_on: Optional[date] = None
    ) -> Account:
        """Open a personal account with a generated GR100... IBAN"""
        if interest_rate is None:
            interest_rate = get_config().decimal("default_interest_rate")
        return self._open(Account(
            iban=self._generate_iban(AccountType.PERSONAL),
            owner_id=owner_id,
            account_type=AccountType.PERSONAL,
            balance=initial_balance,
            interest_rate=interest_rate,
            opened_on=opened_on
        ))

    def open_business_account(
        self,
        owner_id: str,
        initial_balance: Decimal = ZERO,
        maintenance_fee: Optional[Decimal] = None,
        interest_rate: Optional[Decimal] = None,
        opened_on: Optional[date] = None
    ) -> Account:
        """Open a business account with a generated GR200... IBAN"""
        config = get_config()
        if maintenance_fee is None:
            maintenance_fee = config.decimal("default_maintenance_fee")
        if interest_rate is None:
            interest_rate = config.decimal("default_interest_rate")
        return self._open(Account(
            iban=self._generate_iban(AccountType.BUSINESS),
            owner_id=owner_id,
            account_type=AccountType.BUSINESS,
            balance=initial_balance,
            interest_rate=interest_rate,
            maintenance_fee=maintenance_fee,
            opened_on=opened_on
        ))

    def get_account(self, iban: str) -> Account:
        """Get account by IBAN, raising EntityNotFoundError when unknown"""
        account = self._accounts.get(iban)
        if not account:
            raise EntityNotFoundError(f"Account {iban} not found")
        return account

    def find_account(self, iban: str) -> Optional[Account]:
        return self._accounts.get(iban)

    def list_accounts(self) -> List[Account]:
        return list(self._accounts.values())

    def active_accounts(self) -> List[Account]:
        return [a for a in self._accounts.values() if a.is_active]

    def active_business_accounts(self) -> List[Account]:
        return [a for a in self._accounts.values() if a.is_active and a.is_business]

    def accounts_for_owner(self, customer_id: str) -> List[Account]:
        """Accounts where the customer is primary owner or co-owner"""
        return [a for a in self._accounts.values() if a.is_owner(customer_id)]

    def business_accounts_for_owner(self, customer_id: str) -> List[Account]:
        return [a for a in self._accounts.values() if a.is_business and a.owner_id == customer_id]

    def add_co_owner(self, iban: str, customer_id: str) -> Account:
        account = self.get_account(iban)
        if account.is_business:
            raise ValidationError("Business accounts cannot have co-owners")
        if customer_id != account.owner_id and customer_id not in account.co_owner_ids:
            account.co_owner_ids.append(customer_id)
        return account

    def remove_co_owner(self, iban: str, customer_id: str) -> Account:
        account = self.get_account(iban)
        if customer_id in account.co_owner_ids:
            account.co_owner_ids.remove(customer_id)
        return account

    def set_status(self, iban: str, new_status: AccountStatus, reason: str = "") -> Account:
        """Change account status; CLOSED is terminal"""
        account = self.get_account(iban)
        if account.status == AccountStatus.CLOSED and new_status != AccountStatus.CLOSED:
            raise InvalidStateError(f"Account {iban} is closed")

        old_status = account.status
        account.status = new_status
        log_action(
            self.logger, "info", f"Account {iban} status {old_status.value} -> {new_status.value}",
            action="set_account_status", resource=f"account:{iban}",
            extra={"reason": reason}
        )
        return account

    def freeze(self, iban: str, reason: str = "") -> Account:
        return self.set_status(iban, AccountStatus.FROZEN, reason)

    def unfreeze(self, iban: str, reason: str = "") -> Account:
        return self.set_status(iban, AccountStatus.ACTIVE, reason)

    def deactivate(self, iban: str, reason: str = "") -> Account:
        return self.set_status(iban, AccountStatus.INACTIVE, reason)

    def close(self, iban: str, reason: str = "") -> Account:
        """Close an account; it must be emptied first"""
        account = self.get_account(iban)
        if account.balance != ZERO:
            raise InvalidStateError(
                f"Cannot close account with non-zero balance: {format_amount(account.balance)}"
            )
        return self.set_status(iban, AccountStatus.CLOSED, reason)

    def set_interest_rate(self, iban: str, new_rate: Decimal) -> Account:
        if new_rate < ZERO:
            raise ValidationError("Interest rate cannot be negative")
        account = self.get_account(iban)
        account.interest_rate = new_rate
        return account

    def set_maintenance_fee(self, iban: str, new_fee: Decimal) -> Account:
        account = self.get_account(iban)
        if not account.is_business:
            raise ValidationError("Only business accounts carry a maintenance fee")
        if new_fee < ZERO:
            raise ValidationError("Maintenance fee cannot be negative")
        account.maintenance_fee = new_fee
        return account
