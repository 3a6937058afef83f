from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, cast

import structlog
from cryptography.fernet import Fernet, InvalidToken

from .store import SettingsStore

log = structlog.get_logger()

OLLAMA_CLOUD_URL = "https://ollama.com"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


@dataclass(frozen=True)
class ResolvedCredential:
    endpoint: str
    api_key: str

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers


class CredentialResolver(Protocol):
    async def resolve(self) -> ResolvedCredential | None: ...


class StaticCredentialResolver:
    def __init__(self, endpoint: str, api_key: str | None, *, require_key: bool = True):
        self.endpoint = endpoint
        self.api_key = api_key
        self.require_key = require_key

    async def resolve(self) -> ResolvedCredential | None:
        if self.require_key and not self.api_key:
            return None
        return ResolvedCredential(endpoint=self.endpoint, api_key=self.api_key or "")


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "t")
    return bool(value)


class SettingsStoreCredentialResolver:
    """
    Resolve a self-hosted provider from the settings store.

    The latest active settings row wins. A row pointing at the hosted cloud uses
    the environment cloud key; a self-hosted row carries its own key. Without a
    row the environment URL is used; a failing lookup resolves to nothing.
    """

    def __init__(
        self,
        provider_id: str,
        store: SettingsStore | None,
        *,
        env_url: str | None = None,
        cloud_api_key: str | None = None,
        cloud_url: str = OLLAMA_CLOUD_URL,
    ):
        self.provider_id = provider_id
        self.store = store
        self.env_url = env_url
        self.cloud_api_key = cloud_api_key
        self.cloud_url = cloud_url.rstrip("/")

    async def resolve(self) -> ResolvedCredential | None:
        row: dict[str, Any] | None = None
        if self.store is not None:
            try:
                row = await self.store.get_provider_settings(self.provider_id)
            except Exception as e:
                log.warning("provider_settings_lookup_failed", provider=self.provider_id, error=str(e))
                return None

        if row and _truthy(row.get("is_active", True)):
            base_url = str(row.get("base_url") or row.get("ollama_url") or "").rstrip("/")
            if base_url:
                if base_url == self.cloud_url:
                    api_key = self.cloud_api_key or ""
                else:
                    api_key = str(row.get("api_key") or row.get("api_key_encrypted") or "")
                log.info(
                    "provider_settings_resolved",
                    provider=self.provider_id,
                    mode="cloud" if base_url == self.cloud_url else "self_hosted",
                    base_url=base_url,
                )
                return ResolvedCredential(endpoint=f"{base_url}{CHAT_COMPLETIONS_PATH}", api_key=api_key)

        if not self.env_url:
            return None
        return ResolvedCredential(
            endpoint=f"{self.env_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}",
            api_key=self.cloud_api_key or "",
        )


def encrypt_bytes(key_str: str, data: bytes) -> bytes:
    return Fernet(key_str.encode("utf-8")).encrypt(data)


def decrypt_bytes(key_str: str, token: bytes) -> bytes:
    try:
        return Fernet(key_str.encode("utf-8")).decrypt(token)
    except InvalidToken as e:
        raise ValueError("Failed to decrypt credentials (wrong key or corrupted file).") from e


class EncryptedCredentialFile:
    """
    Fernet-encrypted JSON blob mapping provider id -> {"endpoint", "api_key"}.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self.fernet_key = fernet_key

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, payload: dict[str, dict[str, str]]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.path.write_bytes(encrypt_bytes(self.fernet_key, raw))

    def load(self) -> dict[str, dict[str, str]]:
        raw = decrypt_bytes(self.fernet_key, self.path.read_bytes())
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Credential payload must be a JSON object.")
        return cast(dict[str, dict[str, str]], payload)


class EncryptedFileCredentialResolver:
    def __init__(self, provider_id: str, credential_file: EncryptedCredentialFile, *, default_endpoint: str | None = None):
        self.provider_id = provider_id
        self.credential_file = credential_file
        self.default_endpoint = default_endpoint

    async def resolve(self) -> ResolvedCredential | None:
        if not self.credential_file.exists():
            return None
        try:
            payload = self.credential_file.load()
        except ValueError as e:
            log.warning("credential_file_unreadable", provider=self.provider_id, error=str(e))
            return None
        entry = payload.get(self.provider_id)
        if not isinstance(entry, dict) or not entry.get("api_key"):
            return None
        endpoint = entry.get("endpoint") or self.default_endpoint
        if not endpoint:
            return None
        return ResolvedCredential(endpoint=endpoint, api_key=entry["api_key"])
