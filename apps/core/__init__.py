"""
Core app: tenants, users, request context, error taxonomy and the unit of work
shared by every billing operation.
"""
