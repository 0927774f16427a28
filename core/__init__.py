"""
Core utilities and configuration for the CDC control plane.

This package provides foundational components used throughout the service:

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and secret masking
    timeutils: Naive-UTC clock helpers

Usage:
    from core.config import settings
    from core.database import async_session_maker, commit_or_raise
    from core.exceptions import NotFoundError, EngineUnreachable
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "commit_or_raise",
    "setup_logging",
    "mask_sensitive",
    "utcnow",
    # Exceptions
    "ControlPlaneException",
    "RetryableError",
    "NonRetryableError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
    "EngineError",
    "EngineUnreachable",
    "EngineRejected",
    "ConnectorNotFoundError",
]
