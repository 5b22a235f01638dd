"""
Shared components: configuration, logging, metrics, schemas and the cache layer.
"""
