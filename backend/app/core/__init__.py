"""
Core package — cross-cutting concerns.

Modules:
    config        — environment variables & settings
    logging       — structured JSON logging
    errors        — exception hierarchy & handlers
    health        — health check aggregation
    middleware    — request logging & correlation IDs
    database      — async PostgreSQL connection
    redis_client  — Redis client for the geo index
"""
