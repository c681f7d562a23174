"""
Microfinance Back-Office

EMI loan book for a microfinance office: Decimal money math, due-date
schedules, payment ledgers, completion tracking, the EMI calendar and an
approval queue, with an audit trail behind every change.
"""

__version__ = "1.0.0"
