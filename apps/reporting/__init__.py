"""
Read-only business reports over sales, ledger and stock.
"""
