# wallet/__init__.py
"""
Client-side balance & portfolio synchronization.

Provides:
- Portfolio Store: cached balance, holdings and valuation, persisted to a key-value store
- Balance Sync Controller: TTL cache, single-flight refresh, background polling
- Push feed: server-sent-event invalidation
- Application facade and render adapters for UI surfaces
"""
