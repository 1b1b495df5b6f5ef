"""
Identity provider abstract interface.

Defines the contract that all identity providers must implement.
"""

from abc import ABC, abstractmethod


class IdentityProvider(ABC):
    """Abstract identity provider.

    The authentication flow itself lives outside this package; a provider
    only reports its outcome, the current user's id.
    """

    @abstractmethod
    async def current_user_id(self) -> str | None:
        """Get the current user's id.

        Returns:
            The user id, or None for an anonymous (guest) session
        """
        ...
