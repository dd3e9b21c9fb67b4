"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging + alert context
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    middleware      — request context, timing, acknowledgement budget
    redis_client    — async Redis connection
    runtime_config  — TTL-cached operator settings from the app_config table
"""
