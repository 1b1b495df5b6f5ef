"""
Storage keys and user scopes.

A storage key names a logical record set ("customers", "orders", ...).
Keys are registered centrally so the migration sweeper and the status
tooling can enumerate them. A user scope is the owning user's id, or
the guest sentinel for anonymous sessions.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .exceptions import UnknownStorageKeyError

GUEST_SCOPE = "guest"
NATIVE_KEY_SEPARATOR = ":"
DEFAULT_APP_PREFIX = "retail-ops"

# Keys used by the retail operations application
USER_PREFERENCES = "user-preferences"
CUSTOMERS = "customers"
ORDERS = "orders"
PRODUCTS = "products"
RETAILERS = "retailers"
LOCATIONS = "locations"
CLAIMS = "claims"
SHIPMENTS = "shipments"
CART = "cart"
NOTIFICATIONS = "notifications"
FILTER_SETTINGS = "filter-settings"
VIEW_PREFERENCES = "view-preferences"

DEFAULT_STORAGE_KEYS: tuple[str, ...] = (
    USER_PREFERENCES,
    CUSTOMERS,
    ORDERS,
    PRODUCTS,
    RETAILERS,
    LOCATIONS,
    CLAIMS,
    SHIPMENTS,
    CART,
    NOTIFICATIONS,
    FILTER_SETTINGS,
    VIEW_PREFERENCES,
)


def validate_key(key: str) -> str:
    """Check that a storage key can be embedded in a native key."""
    if not key or not key.strip():
        raise ValueError("Storage key must be a non-empty string")
    if NATIVE_KEY_SEPARATOR in key:
        raise ValueError(f"Storage key may not contain '{NATIVE_KEY_SEPARATOR}': {key}")
    return key


def scope_for(user_id: str | None) -> str:
    """Map an identity provider's user id to a user scope."""
    if not user_id:
        return GUEST_SCOPE
    return user_id


def is_authenticated_scope(scope: str | None) -> bool:
    """True for scopes that belong to a signed-in user."""
    return bool(scope) and scope != GUEST_SCOPE


def native_key(app_prefix: str, key: str, scope: str | None) -> str:
    """Derive the local cache key ``<app-prefix>:<key>:<scope-or-guest>``."""
    return NATIVE_KEY_SEPARATOR.join((app_prefix, key, scope_for(scope)))


def parse_native_key(app_prefix: str, value: str) -> tuple[str, str] | None:
    """Split a native key back into (key, scope).

    Returns None for keys that belong to another prefix. Scopes may
    themselves contain the separator, so only the first one after the
    storage key is significant.
    """
    head = app_prefix + NATIVE_KEY_SEPARATOR
    if not value.startswith(head):
        return None
    key, sep, scope = value[len(head):].partition(NATIVE_KEY_SEPARATOR)
    if not sep or not key or not scope:
        return None
    return key, scope


class StorageKeyRegistry:
    """Ordered set of registered storage keys."""

    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._keys: dict[str, None] = {}
        for key in keys:
            self.register(key)

    @classmethod
    def default(cls) -> StorageKeyRegistry:
        """Registry holding the application's standard keys."""
        return cls(DEFAULT_STORAGE_KEYS)

    def register(self, key: str) -> str:
        """Register a key. Registering an existing key is a no-op."""
        self._keys[validate_key(key)] = None
        return key

    def unregister(self, key: str) -> None:
        self._keys.pop(key, None)

    def get(self, key: str) -> str:
        """Return the key if registered.

        Raises:
            UnknownStorageKeyError: If the key was never registered
        """
        if key not in self._keys:
            raise UnknownStorageKeyError(key)
        return key

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"StorageKeyRegistry({list(self._keys)!r})"
