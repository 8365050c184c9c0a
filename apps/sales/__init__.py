"""
Sales app: invoices, payments, returns, adjustments and cancellation.
"""
