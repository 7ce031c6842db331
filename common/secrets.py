import json
import os
from pathlib import Path
from typing import Any, Optional

# Secrets that may also be supplied directly through the environment as JSON
# (handy for containers without a mounted secrets file).
_ENV_FALLBACKS = {
    "API_TOKENS": "SOLVENCY_API_TOKENS",
    "JWT_SECRET": "SOLVENCY_JWT_SECRET",
}


class SecretsManager:
    """Load secrets from a JSON file pointed to by ``SECRETS_PATH``.

    The file is cached on first access. Keys missing from the file fall back to
    the environment variables listed in ``_ENV_FALLBACKS``. Tests replace the
    cache with :meth:`set_override` and restore it with :meth:`reset`.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(
            path or os.getenv("SECRETS_PATH", "/var/run/secrets/solvency.json")
        )
        self._cache: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._cache is None:
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    self._cache = json.load(fh)
            except FileNotFoundError:
                self._cache = {}
        return self._cache

    def _from_env(self, key: str) -> Any:
        env_name = _ENV_FALLBACKS.get(key)
        raw = os.getenv(env_name) if env_name else None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # plain strings such as a JWT secret
            return raw

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Return secret value for *key* or *default* if missing."""

        data = self._load()
        if key in data:
            return data[key]
        value = self._from_env(key)
        return default if value is None else value

    def set_override(self, data: dict[str, Any]) -> None:
        """Replace the entire secret cache (test helper)."""

        self._cache = dict(data)

    def reset(self) -> None:
        """Drop the cache so the next lookup re-reads the secrets file."""

        self._cache = None


# Global default manager
secrets = SecretsManager()


def get_secret(key: str, default: Optional[Any] = None) -> Any:
    """Convenience wrapper around :class:`SecretsManager`."""

    return secrets.get(key, default)
