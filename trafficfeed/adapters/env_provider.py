from __future__ import annotations

import logging
import os

from trafficfeed.ports.secrets_provider import SecretsProvider

_LOGGER = logging.getLogger(__name__)

FEED_API_KEY = "feed_api_key"


class MissingSecretError(ValueError):
    """
    Raised when a logical secret cannot be resolved from the environment.
    """

    def __init__(self, secret_name: str) -> None:
        super().__init__(secret_name)
        self.secret_name = secret_name

    def __str__(self) -> str:
        return f"Secret '{self.secret_name}' is unavailable"


class EnvSecretsProvider(SecretsProvider):
    def __init__(
        self,
        prefix: str = "TRAFFICFEED_SECRET_",
        allowed: dict[str, str] | None = None,
    ) -> None:
        """
        Map logical secret names onto prefixed environment variables.

        The feed key resolves from TRAFFICFEED_SECRET_API_KEY by default.
        """

        if not prefix:
            raise ValueError("Environment prefix must be a non-empty string")
        self._prefix = prefix
        base_allowed: dict[str, str] = {FEED_API_KEY: "API_KEY"}
        if allowed:
            base_allowed.update(allowed)
        self._allowed = base_allowed

    def env_var_for(self, secret_name: str) -> str:
        if secret_name not in self._allowed:
            raise MissingSecretError(secret_name)
        return f"{self._prefix}{self._allowed[secret_name]}"

    def get(self, secret_name: str) -> str:
        """Resolve a logical secret name to a concrete environment variable value."""

        env_var = self.env_var_for(secret_name)
        value = os.environ.get(env_var, "")
        if not value.strip():
            # empty counts as unset
            raise MissingSecretError(secret_name)

        _LOGGER.debug(
            "secret_resolved",
            extra={
                "event": "secret_resolved",
                "secret_name": secret_name,
                "source": "env",
            },
        )
        return value.strip()
