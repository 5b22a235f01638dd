"""
HTTP interface for the Cursus cache service.

Exposes cache metrics, alerts, cleanup and invalidation endpoints under
``/api/cache`` plus a ``/health`` check.
"""
