"""
Microfinance Loan Engine

Amortization schedules, an optimistic-versioned payment ledger, late penalty
accrual and an idempotent daily reminder sweep for microfinance loans.
"""

__version__ = "1.0.0"
