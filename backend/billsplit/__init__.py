"""BillSplit backend package.

Shared bills are split across participants by per-product share
percentages.  The package holds the FastAPI application, SQLAlchemy
models, the allocation engine and the service layer around it
(plan limits, templates, analytics, exports, Stripe subscriptions).

Run the API locally with::

    uvicorn billsplit.api.main:app --reload

Configuration comes from environment variables or a ``.env`` file; see
``billsplit.core.config``.
"""

__all__: list[str] = []
