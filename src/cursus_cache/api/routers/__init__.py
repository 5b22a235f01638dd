"""
API routers for the cache endpoints:
- metrics: performance metrics, health and reports
- alerts: threshold monitoring and recent alerts
- cleanup: scheduled cleanup and namespace flush
- invalidate: event, pattern, user and key invalidation
"""
