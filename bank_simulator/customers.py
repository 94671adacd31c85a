"""
Customer Directory Module

Customers own accounts, bills and standing orders. Individuals, businesses
and administrators share one flat record tagged by CustomerType; the
role-specific details live in optional fields. Login and password checking
are handled elsewhere; the stored hash is only carried through persistence.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .errors import EntityNotFoundError, ValidationError


class CustomerType(Enum):
    """Customer roles"""
    INDIVIDUAL = "individual"
    BUSINESS = "business"
    ADMIN = "admin"


@dataclass
class Customer:
    """Bank customer (or administrator)"""
    id: str
    username: str
    customer_type: CustomerType
    display_name: str
    phone: str = ""
    locked: bool = False
    password_hash: Optional[str] = None
    # INDIVIDUAL payload
    address: Optional[str] = None
    tax_id: Optional[str] = None
    # BUSINESS payload
    vat_number: Optional[str] = None
    # ADMIN payload
    admin_level: Optional[int] = None

    def __post_init__(self):
        if not self.username:
            raise ValidationError("Username is required")
        if self.customer_type == CustomerType.BUSINESS and not self.vat_number:
            raise ValidationError("Business customers require a VAT number")
        if self.customer_type != CustomerType.BUSINESS and self.vat_number:
            raise ValidationError("Only business customers carry a VAT number")

    @property
    def is_business(self) -> bool:
        return self.customer_type == CustomerType.BUSINESS

    @property
    def is_individual(self) -> bool:
        return self.customer_type == CustomerType.INDIVIDUAL


class CustomerDirectory:
    """Registry of customers keyed by id"""

    def __init__(self, customers: Optional[List[Customer]] = None):
        self._customers: Dict[str, Customer] = {c.id: c for c in (customers or [])}
        self._counter = len(self._customers) + 1

    def _next_id(self, prefix: str) -> str:
        while True:
            customer_id = f"{prefix}{self._counter:04d}"
            self._counter += 1
            if customer_id not in self._customers:
                return customer_id

    def _register(self, customer: Customer) -> Customer:
        if self.find_by_username(customer.username):
            raise ValidationError(f"Username '{customer.username}' is already taken")
        self._customers[customer.id] = customer
        return customer

    def register_individual(self, username: str, full_name: str, address: str = "",
                            phone: str = "", tax_id: str = "",
                            password_hash: Optional[str] = None) -> Customer:
        """Register an individual customer"""
        return self._register(Customer(
            id=self._next_id("IND"),
            username=username,
            customer_type=CustomerType.INDIVIDUAL,
            display_name=full_name,
            phone=phone,
            address=address,
            tax_id=tax_id,
            password_hash=password_hash,
        ))

    def register_business(self, username: str, business_name: str, vat_number: str,
                          phone: str = "", password_hash: Optional[str] = None) -> Customer:
        """Register a business customer"""
        return self._register(Customer(
            id=self._next_id("BUS"),
            username=username,
            customer_type=CustomerType.BUSINESS,
            display_name=business_name,
            phone=phone,
            vat_number=vat_number,
            password_hash=password_hash,
        ))

    def get(self, customer_id: str) -> Customer:
        customer = self._customers.get(customer_id)
        if not customer:
            raise EntityNotFoundError(f"Customer {customer_id} not found")
        return customer

    def find_by_username(self, username: str) -> Optional[Customer]:
        for customer in self._customers.values():
            if customer.username == username:
                return customer
        return None

    def set_locked(self, customer_id: str, locked: bool) -> Customer:
        customer = self.get(customer_id)
        customer.locked = locked
        return customer

    def list_customers(self) -> List[Customer]:
        return list(self._customers.values())
