"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging, address masking
    errors          — exception hierarchy & handlers
    middleware      — request id, timing, access log
    health          — health check aggregation
"""
