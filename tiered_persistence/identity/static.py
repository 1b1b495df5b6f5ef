"""
In-process identity provider.

Holds the user id handed over by the application's session layer.
"""

from .provider import IdentityProvider


class StaticIdentityProvider(IdentityProvider):
    """Identity provider fed directly by the application.

    Starts signed out unless a user id is given.
    """

    def __init__(self, user_id: str | None = None):
        self._user_id = user_id or None

    async def current_user_id(self) -> str | None:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None

    @property
    def authenticated(self) -> bool:
        return self._user_id is not None
