"""
Services module - token data pipeline.

Contains:
- Providers: rate limited, retrying source clients
- Cache: Redis + in-memory two-tier cache
- Aggregation: fan-out and record merge
- Query: filter/sort/paginate snapshots
- Broadcast: change detection and event publishing
"""
