"""
Demo data set: three individual customers, two businesses, six accounts,
four bills, a few manual transactions and one monthly standing order.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Dict

from .logging_config import get_logger, log_action
from .simulation import SimulationContext

logger = get_logger("banksim.demo")


def load_demo_data(context: SimulationContext) -> Dict[str, str]:
    """
    Populate an empty bank relative to context.current_date.

    Returns:
        Handles of the created entities (customer ids and IBANs) by short
        name, or an empty dict when the bank already has customers
    """
    if context.customers.list_customers():
        logger.info("Customers already exist, demo data not loaded")
        return {}

    customers = context.customers
    accounts = context.accounts
    today = context.current_date
    at = context.now()

    john = customers.register_individual(
        "john", "John Smith", "123 Main St, Athens", "6901234567", "123456789")
    maria = customers.register_individual(
        "maria", "Maria Papadopoulou", "456 Oak Ave, Thessaloniki", "6902345678", "987654321")
    nikos = customers.register_individual(
        "nikos", "Nikos Georgiou", "789 Pine Rd, Patras", "6903456789", "456789123")
    techcorp = customers.register_business(
        "techcorp", "TechCorp Solutions", "EL123456789", "6904567890")
    utility = customers.register_business(
        "utility", "Greek Utilities Co", "EL987654321", "6905678901")

    john_main = accounts.open_personal_account(john.id, Decimal("5000.00"), opened_on=today)
    john_joint = accounts.open_personal_account(john.id, Decimal("2500.00"), opened_on=today)
    maria_main = accounts.open_personal_account(maria.id, Decimal("3500.00"), opened_on=today)
    nikos_main = accounts.open_personal_account(nikos.id, Decimal("1500.00"), opened_on=today)
    accounts.add_co_owner(john_joint.iban, maria.id)
    techcorp_main = accounts.open_business_account(techcorp.id, Decimal("50000.00"), opened_on=today)
    utility_main = accounts.open_business_account(utility.id, Decimal("100000.00"), opened_on=today)

    bills = context.bills
    bills.create_bill(john.id, utility.id, "Greek Utilities Co",
                      Decimal("85.50"), today + timedelta(days=15), "RF00001234")
    bills.create_bill(john.id, techcorp.id, "TechCorp Solutions",
                      Decimal("199.99"), today + timedelta(days=30), "RF00001235")
    bills.create_bill(maria.id, utility.id, "Greek Utilities Co",
                      Decimal("72.30"), today + timedelta(days=20), "RF00001236")
    bills.create_bill(nikos.id, utility.id, "Greek Utilities Co",
                      Decimal("95.00"), today + timedelta(days=10), "RF00001237")

    processor = context.processor
    processor.deposit(john_main.iban, Decimal("1000.00"), "Initial deposit", at=at)
    processor.transfer(john_main.iban, maria_main.iban, Decimal("250.00"), "Birthday gift", at=at)
    processor.withdraw(maria_main.iban, Decimal("100.00"), "ATM withdrawal", at=at)

    context.standing_orders.create_transfer_order(
        owner_id=john.id,
        source_iban=john_main.iban,
        destination_iban=maria_main.iban,
        amount=Decimal("100.00"),
        frequency_months=1,
        execution_day=15,
        start_date=today,
        description="Monthly allowance"
    )

    log_action(logger, "info", "Demo data loaded", action="load_demo_data", simulated_date=today)

    return {
        "john": john.id,
        "maria": maria.id,
        "nikos": nikos.id,
        "techcorp": techcorp.id,
        "utility": utility.id,
        "john_main": john_main.iban,
        "john_joint": john_joint.iban,
        "maria_main": maria_main.iban,
        "nikos_main": nikos_main.iban,
        "techcorp_main": techcorp_main.iban,
        "utility_main": utility_main.iban,
    }
