"""
Django settings package for the udhaar billing platform.

This package contains environment-specific settings modules:
- base.py: Common settings for all environments
- development.py: Development-specific settings (PostgreSQL, .env support)
- test.py: Settings used by the pytest suite (in-memory SQLite)

The appropriate settings module is loaded based on the DJANGO_SETTINGS_MODULE
environment variable.
"""
