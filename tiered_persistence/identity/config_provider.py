"""
Config file identity provider.

Reads identity from a local configuration file for development
and operator tooling.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from .provider import IdentityProvider

logger = logging.getLogger(__name__)


class ConfigFileIdentityProvider(IdentityProvider):
    """Identity provider that reads from local config.

    Configuration in ~/.retail-ops/settings.yaml:

    ```yaml
    identity:
      user_id: "user-42"
    ```

    If the file or the identity section is missing, the session is
    treated as a guest.
    """

    def __init__(self, config_path: Path | None = None):
        """Initialize the config file provider.

        Args:
            config_path: Path to settings.yaml. Defaults to ~/.retail-ops/settings.yaml
        """
        self.config_path = config_path or Path.home() / ".retail-ops" / "settings.yaml"
        self._user_id: str | None = None
        self._loaded = False

    async def current_user_id(self) -> str | None:
        """Get the configured user id (cached after the first read)."""
        if not self._loaded:
            identity_config = self._load_config().get("identity") or {}
            user_id = identity_config.get("user_id")
            self._user_id = str(user_id) if user_id else None
            self._loaded = True
        return self._user_id

    def reload(self) -> None:
        """Forget the cached id so the next call re-reads the file."""
        self._loaded = False
        self._user_id = None

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file."""
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path) as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning(f"Ignoring unreadable identity config {self.config_path}: {e}")
            return {}
        return loaded if isinstance(loaded, dict) else {}
