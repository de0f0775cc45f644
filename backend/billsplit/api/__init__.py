"""API package.

Router modules live in ``billsplit.api.routes`` so tests can mount them
individually, e.g. ``from billsplit.api.routes.bills import router``.
"""

__all__ = [
	"routes",
]
