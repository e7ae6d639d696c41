"""Run-time resolution of ``${ref:...}`` and ``${secret:...}`` placeholders."""

from __future__ import annotations

import re
from typing import Any, Protocol

from stackpilot.core.errors import ConfigurationError
from stackpilot.state.base import StateStore

_PLACEHOLDER = re.compile(r"\$\{(ref|secret):([^}]+)\}")


class SecretSource(Protocol):
    async def get_secret_value(self, secret_id: str, key: str) -> str | None:
        ...


class ConfigResolver:
    """
    Replaces placeholders in a step's configuration just before it runs.

    ``${ref:NAME}`` becomes the provider id recorded for NAME.
    ``${secret:ID#KEY}`` becomes KEY of the JSON secret ID; without ``#KEY``
    the secret's ``value`` key is used.
    """

    def __init__(self, store: StateStore, secrets: SecretSource | None = None) -> None:
        self._store = store
        self._secrets = secrets

    async def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return await self._resolve_string(value)
        if isinstance(value, dict):
            return {k: await self.resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [await self.resolve(item) for item in value]
        return value

    async def _resolve_string(self, text: str) -> str:
        parts: list[str] = []
        position = 0
        for match in _PLACEHOLDER.finditer(text):
            parts.append(text[position : match.start()])
            namespace, target = match.group(1), match.group(2)
            if namespace == "ref":
                parts.append(await self._reference(target))
            else:
                parts.append(await self._secret(target))
            position = match.end()
        parts.append(text[position:])
        return "".join(parts)

    async def _reference(self, name: str) -> str:
        record = await self._store.get(name)
        if record is None:
            raise ConfigurationError(
                f"Referenced resource '{name}' has not been applied", details={"resource": name}
            )
        return record.provider_id

    async def _secret(self, target: str) -> str:
        if self._secrets is None:
            raise ConfigurationError("Secret references require a secrets source")
        secret_id, _, key = target.partition("#")
        value = await self._secrets.get_secret_value(secret_id, key or "value")
        if value is None:
            raise ConfigurationError(
                f"Secret '{secret_id}' has no key '{key or 'value'}'",
                details={"secret_id": secret_id},
            )
        return str(value)
