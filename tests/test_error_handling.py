"""
Tests for Memory Server Error Handling
======================================
Tests the exception hierarchy, error codes, and storage error wrapping.
"""

import sqlite3

import pytest

from mcp_memory.core.exceptions import (
    # Base
    MemoryServerError,
    RecoverableError,
    IrrecoverableError,
    ErrorCategory,
    # Storage
    StorageError,
    StorageConnectionError,
    StorageTimeoutError,
    PoolExhaustedError,
    DataCorruptionError,
    # Config / validation / not found
    ConfigurationError,
    ValidationError,
    NotFoundError,
    MemoryNotFoundError,
    LinkNotFoundError,
    # Provider
    ProviderError,
    ProviderTimeoutError,
    UnsupportedProviderError,
    DimensionMismatchError,
    DependencyMissingError,
    # Protocol
    ProtocolError,
    InvalidRequestError,
    MethodNotFoundError,
    InvalidParamsError,
    InternalError,
    ServerDrainingError,
    NotReadyError,
    # Utilities
    wrap_storage_exception,
    is_debug_mode,
)


class TestExceptionHierarchy:
    def test_base(self):
        exc = MemoryServerError("boom", {"a": 1})
        assert exc.message == "boom"
        assert exc.context == {"a": 1}
        assert exc.error_code == "MEMORY_SERVER_ERROR"
        assert "context=" in str(exc)

    def test_overrides(self):
        exc = MemoryServerError("boom", error_code="CUSTOM", recoverable=False)
        assert exc.error_code == "CUSTOM"
        assert exc.recoverable is False

    @pytest.mark.parametrize("exc,recoverable,category", [
        (StorageConnectionError("sqlite"), True, ErrorCategory.STORAGE),
        (StorageTimeoutError("sqlite", "insert", 5000), True, ErrorCategory.STORAGE),
        (PoolExhaustedError("sqlite", 5, 2.0), True, ErrorCategory.STORAGE),
        (DataCorruptionError("mem-1"), False, ErrorCategory.STORAGE),
        (ConfigurationError("database.path", "empty"), False, ErrorCategory.CONFIG),
        (ValidationError("type", "required"), False, ErrorCategory.VALIDATION),
        (MemoryNotFoundError("mem-1"), False, ErrorCategory.MEMORY),
        (LinkNotFoundError("a", "b", "rel"), False, ErrorCategory.MEMORY),
        (ProviderTimeoutError("hashing", "embed", 1.0), True, ErrorCategory.PROVIDER),
        (UnsupportedProviderError("magic", ["hashing"]), False, ErrorCategory.PROVIDER),
        (DimensionMismatchError(384, 128, "embed"), False, ErrorCategory.PROVIDER),
        (DependencyMissingError("sentence-transformers"), False, ErrorCategory.SYSTEM),
        (InvalidRequestError("bad"), True, ErrorCategory.PROTOCOL),
    ])
    def test_recoverability_and_category(self, exc, recoverable, category):
        assert exc.recoverable is recoverable
        assert exc.category is category
        assert isinstance(exc, RecoverableError if recoverable else IrrecoverableError) or isinstance(exc, ProtocolError)

    def test_storage_and_provider_are_distinct(self):
        assert not issubclass(ProviderTimeoutError, StorageError)
        assert not issubclass(StorageTimeoutError, ProviderError)

    def test_not_found_family(self):
        assert issubclass(MemoryNotFoundError, NotFoundError)
        assert issubclass(LinkNotFoundError, NotFoundError)
        exc = MemoryNotFoundError("mem-9")
        assert exc.memory_id == "mem-9"
        assert "mem-9" in exc.message

    def test_validation_error_truncates_value(self):
        exc = ValidationError("content", "too long", "x" * 500)
        assert exc.field == "content"
        assert exc.reason == "too long"
        assert len(exc.context["value"]) == 103


class TestProtocolErrors:
    @pytest.mark.parametrize("cls,code", [
        (InvalidRequestError, -32600),
        (MethodNotFoundError, -32601),
        (InvalidParamsError, -32602),
        (InternalError, -32603),
        (ServerDrainingError, -32000),
        (NotReadyError, -32002),
    ])
    def test_rpc_codes(self, cls, code):
        exc = cls("message", request_id=7, data={"x": 1})
        assert exc.rpc_code == code
        assert exc.request_id == 7
        assert exc.data == {"x": 1}
        assert exc.recoverable is True


class TestToDict:
    def test_to_dict(self):
        d = StorageTimeoutError("sqlite", "list", 5000).to_dict()
        assert d["code"] == "STORAGE_TIMEOUT_ERROR"
        assert d["category"] == "storage"
        assert d["recoverable"] is True
        assert d["context"]["timeout_ms"] == 5000
        assert "traceback" not in d

    def test_to_dict_with_traceback(self):
        try:
            raise ValidationError("x", "bad")
        except ValidationError as e:
            d = e.to_dict(include_traceback=True)
        assert "traceback" in d


class TestWrapStorageException:
    def test_storage_error_passthrough(self):
        original = StorageTimeoutError("sqlite", "get")
        assert wrap_storage_exception("sqlite", "get", original) is original

    def test_timeout(self):
        wrapped = wrap_storage_exception("sqlite", "get", TimeoutError("Timeout"))
        assert isinstance(wrapped, StorageTimeoutError)

    def test_connection_by_message(self):
        wrapped = wrap_storage_exception(
            "sqlite", "insert", sqlite3.OperationalError("unable to open database file")
        )
        assert isinstance(wrapped, StorageConnectionError)
        assert wrapped.context["operation"] == "insert"

    def test_connection_by_type(self):
        wrapped = wrap_storage_exception("sqlite", "insert", ConnectionResetError("reset"))
        assert isinstance(wrapped, StorageConnectionError)

    def test_generic(self):
        wrapped = wrap_storage_exception("sqlite", "list", sqlite3.OperationalError("no such table: x"))
        assert type(wrapped) is StorageError
        assert wrapped.context["original_exception"] == "OperationalError"


class TestDebugMode:
    def test_default_off(self, monkeypatch):
        monkeypatch.delenv("MCP_MEMORY_DEBUG", raising=False)
        assert is_debug_mode() is False

    def test_enabled(self, monkeypatch):
        monkeypatch.setenv("MCP_MEMORY_DEBUG", "true")
        assert is_debug_mode() is True
