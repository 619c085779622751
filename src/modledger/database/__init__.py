"""
Database package for modledger.

Provides the SQLite store with performance monitoring, aggregate caching
and a single managed connection.

Modules:
    - database: ModerationDatabase coordinator
    - db_connection: ConnectionManager (one aiosqlite connection, serialised writes)
    - db_schema: table and index creation
    - db_perf_mon: query timing statistics
    - db_cache: TTL cache for dashboard aggregates
"""
