"""
Products, unit conversion, stock and purchases.
"""
