"""Storefront: personalization and experimentation engine for a retail shop.

This package provides the backend service that turns implicit browsing
signals into product recommendations and assigns visitors to A/B test
variants.

Modules:
    api: FastAPI application and REST API endpoints
    personalization: signal store, scoring and recommendation feeds
    experiments: experiment assignment, outcome recording and tallying
"""

__version__ = "0.1.0"
