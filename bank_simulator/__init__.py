"""
Bank Time Simulator

Simulates a retail bank ledger over a virtual calendar: daily interest
accrual, monthly settlement, maintenance fees, standing orders and bill
aging, all driven day by day with exact Decimal arithmetic.
"""

__version__ = "1.0.0"
