"""
Village SACCO Financial Core

Loan origination and amortization, repayment ledger, savings accounts and
interest accrual for a member-owned savings and credit cooperative. All
money is handled as Decimal and every money movement is journaled.
"""

__version__ = "1.0.0"
