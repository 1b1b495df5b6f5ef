"""
Custom exceptions for tiered persistence.

All tier implementations should raise these exceptions
for consistent error handling across backends.

Only SerializationError and the local-cache errors (LocalCacheQuotaError,
StorageIOError) ever reach a resolver caller. Remote-tier errors are
folded into per-tier outcomes by the resolver.
"""


class PersistenceError(Exception):
    """Base exception for all persistence errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientNetworkError(PersistenceError):
    """Raised when a remote tier is unreachable or times out.

    The tier is treated as down for the current call only.
    """

    def __init__(self, tier: str, cause: Exception | None = None):
        details: dict = {"tier": tier}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Tier unreachable: {tier}", details)
        self.tier = tier
        self.cause = cause


class AuthenticationRequiredError(PersistenceError):
    """Raised when a remote tier needs an authenticated scope that is absent."""

    def __init__(self, tier: str, reason: str | None = None):
        details = {"tier": tier}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication required for {tier}", details)
        self.tier = tier
        self.reason = reason


class SerializationError(PersistenceError):
    """Raised when a value cannot be represented as JSON."""

    def __init__(self, key: str, cause: Exception | None = None):
        details = {"key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Value for {key} is not JSON-serializable", details)
        self.key = key
        self.cause = cause


class LocalCacheQuotaError(PersistenceError):
    """Raised when a local cache write would exceed the configured capacity.

    ``remote_written`` is filled in by the resolver so callers can still
    see whether the value reached a remote tier.
    """

    def __init__(
        self,
        native_key: str,
        needed_bytes: int | None = None,
        quota_bytes: int | None = None,
        remote_written: bool = False,
    ):
        details: dict = {"native_key": native_key}
        if needed_bytes is not None:
            details["needed_bytes"] = needed_bytes
        if quota_bytes is not None:
            details["quota_bytes"] = quota_bytes
        message = f"Local cache quota exceeded writing {native_key}"
        if needed_bytes is not None and quota_bytes is not None:
            message += f": {needed_bytes} > {quota_bytes} bytes"
        super().__init__(message, details)
        self.native_key = native_key
        self.needed_bytes = needed_bytes
        self.quota_bytes = quota_bytes
        self.remote_written = remote_written


class StorageIOError(PersistenceError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause
        self.remote_written = False


class UnknownStorageKeyError(PersistenceError):
    """Raised when a storage key has not been registered."""

    def __init__(self, key: str):
        super().__init__(f"Unknown storage key: {key}", {"key": key})
        self.key = key


class ConfigurationError(PersistenceError):
    """Raised when persistence configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason
