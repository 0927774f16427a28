"""
Custom exceptions for the CDC control plane with structured error context.

This module provides the exception hierarchy shared by the registry, the
deployment orchestrator, the pipeline lifecycle and the monitoring loop.
Each exception carries context information for debugging and is mapped to
an HTTP status code by the API layer.

Exception Hierarchy:
    ControlPlaneException (base)
    ├── ValidationError            (400)
    ├── NotFoundError              (404)
    │   └── ConnectorNotFoundError
    ├── EngineError
    │   ├── EngineUnreachable      (502, retryable)
    │   └── EngineRejected         (400)
    ├── ConflictError              (409)
    ├── InternalError              (500)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from core.timeutils import utcnow


class ControlPlaneException(Exception):
    """
    Base exception for all control plane errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (pipeline, connector, etc.)
        original_exception: The original exception that was caught (if any)
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ControlPlaneException):
    """
    Mixin for errors that may succeed when the same call is repeated.

    Use this for transient errors like:
    - Network timeouts
    - Engine worker restarts (HTTP 5xx)
    - Temporary database connection issues
    """
    pass


class NonRetryableError(ControlPlaneException):
    """
    Mixin for errors that will fail again on retry.

    Use this for permanent errors like:
    - Engine-side config validation failures
    - Malformed requests
    - Resource not found
    """
    pass


# ============================================================================
# Request Errors
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Exception raised when a request is malformed or violates a policy.

    Context should include:
        - field_name: Name of the offending field (if applicable)
        - details: List of validation messages
    """
    status_code = 400


class NotFoundError(NonRetryableError):
    """
    Exception raised when a pipeline, connector, version or deployment is absent.

    Context should include:
        - resource: Kind of resource (pipeline, connector, version, ...)
        - identifier: The identifier that was looked up
    """
    status_code = 404


class ConflictError(NonRetryableError):
    """
    Exception raised when the requested change races another writer or
    is illegal in the current state (restore vs. purge, lifecycle
    transitions, soft-deleted pipelines).
    """
    status_code = 409


class InternalError(ControlPlaneException):
    """Exception raised when the metadata store fails."""
    status_code = 500


# ============================================================================
# Execution Engine Errors
# ============================================================================

class EngineError(ControlPlaneException):
    """
    Base exception for execution engine (Kafka Connect) failures.

    Context should include:
        - connect_url: The engine endpoint that failed
        - connector: Connector name (if applicable)
        - status_code: HTTP status code (if applicable)
    """
    status_code = 502


class EngineUnreachable(RetryableError, EngineError):
    """Network failure, timeout or 5xx from the engine."""
    status_code = 502


class EngineRejected(NonRetryableError, EngineError):
    """The engine answered with a 4xx other than 404 (config rejected)."""
    status_code = 400

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        engine_status: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.engine_status = engine_status
        if engine_status:
            self.context["engine_status"] = engine_status


class ConnectorNotFoundError(NotFoundError, EngineError):
    """The engine has no connector with the requested name (HTTP 404)."""
    status_code = 404
