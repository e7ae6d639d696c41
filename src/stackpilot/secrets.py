from __future__ import annotations

import json
from typing import Any

import aioboto3
import structlog

from stackpilot.providers.base import aws_errors

logger = structlog.get_logger()


def _sanitize_secret_id(secret_id: str) -> str:
    """Keep only enough of a secret id to recognise it in logs."""
    if len(secret_id) <= 3:
        return "***"
    if "/" in secret_id:
        return secret_id.split("/", 1)[0] + "/***"
    return secret_id[:2] + "***"


class SecretsManager:
    """AWS Secrets Manager client for loading secrets at runtime."""

    def __init__(self, region: str = "us-east-1", session: Any | None = None) -> None:
        self._region = region
        self._session = session
        self._cache: dict[str, dict[str, Any]] = {}

    async def get_secret(self, secret_id: str) -> dict[str, Any]:
        if secret_id in self._cache:
            return self._cache[secret_id]

        session = self._session or aioboto3.Session(region_name=self._region)
        async with session.client("secretsmanager") as client:
            async with aws_errors("secretsmanager.get_secret_value"):
                response = await client.get_secret_value(SecretId=secret_id)

        secret_string = response.get("SecretString")
        if not secret_string:
            logger.warning("secret_not_found", secret_id=_sanitize_secret_id(secret_id))
            return {}
        try:
            secret_data = json.loads(secret_string)
        except json.JSONDecodeError:
            secret_data = {"value": secret_string}
        if not isinstance(secret_data, dict):
            secret_data = {"value": secret_data}
        self._cache[secret_id] = secret_data
        return secret_data

    async def get_secret_value(self, secret_id: str, key: str) -> str | None:
        secret_data = await self.get_secret(secret_id)
        value = secret_data.get(key)
        return None if value is None else str(value)
