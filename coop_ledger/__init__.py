"""
Cooperative Ledger

Loan financial engine and cash ledger for a closed savings-and-credit
cooperative: flat-total amortization quotes, the loan lifecycle, and
available cash derived from an append-only transaction log.
"""

__version__ = "1.0.0"
