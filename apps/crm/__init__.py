"""
Customers, their running dues and the ledger history behind them.
"""
