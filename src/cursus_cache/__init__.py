"""
Cursus cache service.

Cache invalidation and monitoring layer for the Cursus learning platform:
a typed cache over a key-value store, event-driven invalidation, scheduled
cleanup, health monitoring with threshold alerts, and an HTTP surface under
``/api/cache``.
"""

__version__ = "1.0.0"
