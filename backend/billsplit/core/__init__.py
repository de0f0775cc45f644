"""Core infrastructure: settings, database, security, errors and tasks.

Exports the settings object for short imports (``from billsplit.core import settings``).
"""

from .config import settings  # noqa: F401
