"""
MCP Memory Domain-Specific Exceptions
=====================================

This module defines a hierarchy of exceptions for consistent error handling
across the memory server.

Exception Hierarchy:
    MemoryServerError (base)
    ├── RecoverableError (transient, retry possible)
    │   ├── StorageConnectionError
    │   ├── StorageTimeoutError
    │   ├── PoolExhaustedError
    │   └── ProviderTimeoutError
    ├── IrrecoverableError (permanent, requires intervention)
    │   ├── ConfigurationError
    │   ├── DataCorruptionError
    │   ├── ValidationError
    │   ├── NotFoundError
    │   ├── UnsupportedProviderError
    │   └── DimensionMismatchError
    ├── Domain Errors (mixed recoverability)
    │   ├── StorageError
    │   └── ProviderError
    └── ProtocolError (transport boundary, connection stays open)
        ├── InvalidRequestError
        ├── MethodNotFoundError
        ├── InvalidParamsError
        ├── InternalError
        ├── NotReadyError
        └── ServerDrainingError

Usage Guidelines:
    - Return None for "not found" lookups (get_by_id), raise for mutations
    - Storage and provider failures stay distinguishable for callers
    - Always include context in error messages
    - Use error_code for API responses
"""

from typing import Optional, Any
from enum import Enum
import os


class ErrorCategory(Enum):
    """Categories for error classification."""
    STORAGE = "STORAGE"
    PROVIDER = "PROVIDER"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    MEMORY = "MEMORY"
    PROTOCOL = "PROTOCOL"
    SYSTEM = "SYSTEM"


class MemoryServerError(Exception):
    """
    Base exception for all memory server errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        context: Additional context about the error
        recoverable: Whether the error is potentially recoverable
    """

    error_code: str = "MEMORY_SERVER_ERROR"
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self, include_traceback: bool = False) -> dict:
        """
        Convert exception to dictionary for JSON response.

        Args:
            include_traceback: Whether to include stack trace (only in DEBUG mode)
        """
        result = {
            "error": self.message,
            "code": self.error_code,
            "category": self.category.value,
            "recoverable": self.recoverable,
        }

        if include_traceback:
            import traceback
            result["traceback"] = traceback.format_exc()

        if self.context:
            result["context"] = self.context

        return result


# =============================================================================
# Base Categories: Recoverable vs Irrecoverable
# =============================================================================

class RecoverableError(MemoryServerError):
    """
    Base class for recoverable errors.

    These are transient errors that may succeed on retry:
    - Connection failures
    - Timeouts
    - Pool exhaustion
    """
    recoverable = True


class IrrecoverableError(MemoryServerError):
    """
    Base class for irrecoverable errors.

    These are permanent errors that require intervention:
    - Invalid configuration
    - Data corruption
    - Validation failures
    - Resource not found
    """
    recoverable = False


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(MemoryServerError):
    """Base exception for storage-related errors."""
    error_code = "STORAGE_ERROR"
    category = ErrorCategory.STORAGE


class StorageConnectionError(RecoverableError, StorageError):
    """Raised when connection to storage backend fails."""
    error_code = "STORAGE_CONNECTION_ERROR"

    def __init__(self, backend: str, message: str = "Connection failed", context: Optional[dict] = None):
        ctx = {"backend": backend}
        if context:
            ctx.update(context)
        super().__init__(f"[{backend}] {message}", ctx)
        self.backend = backend


class StorageTimeoutError(RecoverableError, StorageError):
    """Raised when a storage operation exceeds the statement timeout."""
    error_code = "STORAGE_TIMEOUT_ERROR"

    def __init__(self, backend: str, operation: str, timeout_ms: Optional[int] = None, context: Optional[dict] = None):
        msg = f"[{backend}] Operation '{operation}' timed out"
        ctx = {"backend": backend, "operation": operation}
        if timeout_ms is not None:
            ctx["timeout_ms"] = timeout_ms
        if context:
            ctx.update(context)
        super().__init__(msg, ctx)
        self.backend = backend
        self.operation = operation


class PoolExhaustedError(RecoverableError, StorageError):
    """Raised when no pooled connection became free within the acquire timeout."""
    error_code = "POOL_EXHAUSTED_ERROR"

    def __init__(self, backend: str, pool_size: int, wait_seconds: float, context: Optional[dict] = None):
        ctx = {"backend": backend, "pool_size": pool_size, "wait_seconds": wait_seconds}
        if context:
            ctx.update(context)
        super().__init__(
            f"[{backend}] No connection available after {wait_seconds}s (pool size {pool_size})",
            ctx
        )
        self.backend = backend
        self.pool_size = pool_size


class DataCorruptionError(IrrecoverableError, StorageError):
    """Raised when stored data is corrupt or cannot be deserialized."""
    error_code = "DATA_CORRUPTION_ERROR"

    def __init__(self, resource_id: str, reason: str = "Data corruption detected", context: Optional[dict] = None):
        ctx = {"resource_id": resource_id}
        if context:
            ctx.update(context)
        super().__init__(f"{reason} for resource '{resource_id}'", ctx)
        self.resource_id = resource_id


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(IrrecoverableError):
    """Raised when configuration is invalid or missing."""
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        ctx = {"config_key": config_key}
        if context:
            ctx.update(context)
        super().__init__(f"Configuration error for '{config_key}': {reason}", ctx)
        self.config_key = config_key


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(IrrecoverableError):
    """Raised when caller-supplied data violates a documented constraint."""
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        ctx = {"field": field}
        if value is not None:
            # Truncate large values
            value_str = str(value)
            if len(value_str) > 100:
                value_str = value_str[:100] + "..."
            ctx["value"] = value_str
        if context:
            ctx.update(context)
        super().__init__(f"Validation error for '{field}': {reason}", ctx)
        self.field = field
        self.reason = reason


# =============================================================================
# Not Found Errors
# =============================================================================

class NotFoundError(IrrecoverableError):
    """Raised when a referenced resource does not exist."""
    error_code = "NOT_FOUND_ERROR"
    category = ErrorCategory.SYSTEM

    def __init__(self, resource_type: str, resource_id: str, context: Optional[dict] = None):
        ctx = {"resource_type": resource_type, "resource_id": resource_id}
        if context:
            ctx.update(context)
        super().__init__(f"{resource_type} '{resource_id}' not found", ctx)
        self.resource_type = resource_type
        self.resource_id = resource_id


class MemoryNotFoundError(NotFoundError):
    """Raised when a memory is not found."""
    error_code = "MEMORY_NOT_FOUND_ERROR"
    category = ErrorCategory.MEMORY

    def __init__(self, memory_id: str, context: Optional[dict] = None):
        super().__init__("Memory", memory_id, context)
        self.memory_id = memory_id


class LinkNotFoundError(NotFoundError):
    """Raised when a memory link is not found."""
    error_code = "LINK_NOT_FOUND_ERROR"
    category = ErrorCategory.MEMORY

    def __init__(self, source_id: str, target_id: str, relationship: str, context: Optional[dict] = None):
        ctx = {"source_id": source_id, "target_id": target_id, "relationship": relationship}
        if context:
            ctx.update(context)
        super().__init__("Link", f"{source_id} -[{relationship}]-> {target_id}", ctx)


# =============================================================================
# Provider Errors
# =============================================================================

class ProviderError(MemoryServerError):
    """Base exception for embedding provider errors."""
    error_code = "PROVIDER_ERROR"
    category = ErrorCategory.PROVIDER


class ProviderTimeoutError(RecoverableError, ProviderError):
    """Raised when an embedding computation exceeds the provider timeout."""
    error_code = "PROVIDER_TIMEOUT_ERROR"

    def __init__(self, provider: str, operation: str, timeout_seconds: float, context: Optional[dict] = None):
        ctx = {"provider": provider, "operation": operation, "timeout_seconds": timeout_seconds}
        if context:
            ctx.update(context)
        super().__init__(f"[{provider}] Operation '{operation}' timed out after {timeout_seconds}s", ctx)
        self.provider = provider
        self.operation = operation


class UnsupportedProviderError(IrrecoverableError, ProviderError):
    """Raised when an unsupported provider is requested."""
    error_code = "UNSUPPORTED_PROVIDER_ERROR"

    def __init__(self, provider: str, supported_providers: Optional[list] = None, context: Optional[dict] = None):
        ctx = {"provider": provider}
        if supported_providers:
            ctx["supported_providers"] = supported_providers
        if context:
            ctx.update(context)
        msg = f"Unsupported provider: {provider}"
        if supported_providers:
            msg += f". Supported: {', '.join(supported_providers)}"
        super().__init__(msg, ctx)
        self.provider = provider


class DimensionMismatchError(IrrecoverableError, ProviderError):
    """Raised when an embedding does not have the deployment dimension."""
    error_code = "DIMENSION_MISMATCH_ERROR"

    def __init__(self, expected: int, actual: int, operation: str = "operation", context: Optional[dict] = None):
        ctx = {"expected": expected, "actual": actual, "operation": operation}
        if context:
            ctx.update(context)
        super().__init__(
            f"Dimension mismatch in {operation}: expected {expected}, got {actual}",
            ctx
        )
        self.expected = expected
        self.actual = actual
        self.operation = operation


class DependencyMissingError(IrrecoverableError):
    """Raised when a required dependency is missing."""
    error_code = "DEPENDENCY_MISSING_ERROR"
    category = ErrorCategory.SYSTEM

    def __init__(self, dependency: str, message: str = "", context: Optional[dict] = None):
        ctx = {"dependency": dependency}
        if context:
            ctx.update(context)
        msg = f"Missing dependency: {dependency}"
        if message:
            msg += f". {message}"
        super().__init__(msg, ctx)
        self.dependency = dependency


# =============================================================================
# Protocol Errors (JSON-RPC boundary)
# =============================================================================

class ProtocolError(MemoryServerError):
    """
    Base exception for errors at the JSON-RPC transport boundary.

    Always recoverable: the connection stays open after one is reported.

    Attributes:
        rpc_code: JSON-RPC error code placed in the response
        request_id: Correlation id of the offending request, if one was extracted
        data: Optional structured detail for the response's error.data
        reply: False when the offending document was a notification, which
            never receives a response
    """
    error_code = "PROTOCOL_ERROR"
    category = ErrorCategory.PROTOCOL
    recoverable = True
    rpc_code: int = -32603

    def __init__(
        self,
        message: str,
        request_id: Any = None,
        data: Optional[dict] = None,
        context: Optional[dict] = None,
        reply: bool = True,
    ):
        super().__init__(message, context)
        self.request_id = request_id
        self.data = data
        self.reply = reply


class InvalidRequestError(ProtocolError):
    """Malformed envelope: unparseable line, missing method, duplicate id."""
    error_code = "INVALID_REQUEST"
    rpc_code = -32600


class MethodNotFoundError(ProtocolError):
    """Unknown JSON-RPC method or unknown tool name."""
    error_code = "METHOD_NOT_FOUND"
    rpc_code = -32601


class InvalidParamsError(ProtocolError):
    """Params or tool arguments failed schema validation."""
    error_code = "INVALID_PARAMS"
    rpc_code = -32602


class InternalError(ProtocolError):
    """A handler failed while executing a well-formed request."""
    error_code = "INTERNAL_ERROR"
    rpc_code = -32603


class ServerDrainingError(ProtocolError):
    """The connection is draining and accepts no new requests."""
    error_code = "SERVER_DRAINING"
    rpc_code = -32000


class NotReadyError(ProtocolError):
    """A request arrived before the initialize handshake completed."""
    error_code = "NOT_READY"
    rpc_code = -32002


# =============================================================================
# Utility Functions
# =============================================================================

def wrap_storage_exception(backend: str, operation: str, exc: Exception) -> StorageError:
    """
    Wrap a generic exception into an appropriate StorageError.

    Args:
        backend: Name of the storage backend (e.g., 'sqlite')
        operation: Name of the operation that failed
        exc: The original exception

    Returns:
        An appropriate StorageError subclass
    """
    if isinstance(exc, StorageError):
        return exc

    exc_name = type(exc).__name__
    exc_msg = str(exc)
    lowered = exc_msg.lower()

    # Timeout detection
    if 'timeout' in lowered or 'Timeout' in exc_name:
        return StorageTimeoutError(backend, operation)

    # Connection error detection
    if any(x in exc_name.lower() for x in ['connection', 'connect', 'network']):
        return StorageConnectionError(backend, exc_msg)
    if any(x in lowered for x in ['unable to open', 'closed database', 'no active connection', 'disk i/o']):
        return StorageConnectionError(backend, exc_msg, {"operation": operation})

    # Default to generic storage error
    return StorageError(
        f"[{backend}] {operation} failed: {exc_msg}",
        {"backend": backend, "operation": operation, "original_exception": exc_name}
    )


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via environment variable."""
    return os.environ.get("MCP_MEMORY_DEBUG", "").lower() in ("true", "1", "yes")


# =============================================================================
# Convenience Exports
# =============================================================================

__all__ = [
    # Base
    "MemoryServerError",
    "RecoverableError",
    "IrrecoverableError",
    "ErrorCategory",
    # Storage
    "StorageError",
    "StorageConnectionError",
    "StorageTimeoutError",
    "PoolExhaustedError",
    "DataCorruptionError",
    # Config
    "ConfigurationError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    "MemoryNotFoundError",
    "LinkNotFoundError",
    # Provider
    "ProviderError",
    "ProviderTimeoutError",
    "UnsupportedProviderError",
    "DimensionMismatchError",
    "DependencyMissingError",
    # Protocol
    "ProtocolError",
    "InvalidRequestError",
    "MethodNotFoundError",
    "InvalidParamsError",
    "InternalError",
    "ServerDrainingError",
    "NotReadyError",
    # Utilities
    "wrap_storage_exception",
    "is_debug_mode",
]
