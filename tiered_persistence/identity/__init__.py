"""
Identity providers for tiered persistence.

The resolver only needs the current user's id; these providers supply it.
"""

from .config_provider import ConfigFileIdentityProvider
from .provider import IdentityProvider
from .static import StaticIdentityProvider

__all__ = [
    "IdentityProvider",
    "StaticIdentityProvider",
    "ConfigFileIdentityProvider",
]
