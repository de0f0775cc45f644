"""Root pytest configuration.

The ``billsplit`` package sits directly under ``backend/``; shared fixtures
live in ``tests/conftest.py``.  There is no ``__init__`` at the backend root
so the package is not shadowed.
"""
