from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

import structlog

from .config import OrchestratorConfig
from .credentials import (
    CredentialResolver,
    EncryptedCredentialFile,
    EncryptedFileCredentialResolver,
    ResolvedCredential,
    SettingsStoreCredentialResolver,
    StaticCredentialResolver,
)
from .store import SettingsStore

log = structlog.get_logger()

OLLAMA = "ollama"
LOVABLE_AI = "lovable_ai"
OPENAI = "openai"
OPENROUTER = "openrouter"

HOSTED_ENDPOINTS = {
    LOVABLE_AI: "https://ai.gateway.lovable.dev/v1/chat/completions",
    OPENAI: "https://api.openai.com/v1/chat/completions",
    OPENROUTER: "https://openrouter.ai/api/v1/chat/completions",
}

DEFAULT_MODELS = {
    OLLAMA: "gpt-oss:120b-cloud",
    LOVABLE_AI: "google/gemini-2.5-flash",
    OPENAI: "gpt-4o-mini",
    OPENROUTER: "google/gemini-2.5-flash",
}

GATEWAY_MODELS = frozenset(
    {
        "openai/gpt-5-mini",
        "openai/gpt-5",
        "openai/gpt-5-nano",
        "google/gemini-2.5-pro",
        "google/gemini-2.5-flash",
        "google/gemini-2.5-flash-lite",
    }
)

# Self-hosted catalog -> gateway equivalent
OLLAMA_TO_GATEWAY = {
    "gpt-oss:120b-cloud": "google/gemini-2.5-pro",
    "gpt-oss:20b-cloud": "google/gemini-2.5-flash",
    "qwen3-coder:480b-cloud": "google/gemini-2.5-pro",
    "deepseek-v3.1:671b-cloud": "google/gemini-2.5-pro",
    "kimi-k2:1t-cloud": "google/gemini-2.5-flash",
    "glm-4.6:cloud": "google/gemini-2.5-flash",
}


def compatible_model(requested: str | None, provider_id: str) -> str:
    if not requested:
        return DEFAULT_MODELS.get(provider_id, DEFAULT_MODELS[LOVABLE_AI])
    if requested in GATEWAY_MODELS:
        return requested
    if provider_id != OLLAMA and requested in OLLAMA_TO_GATEWAY:
        return OLLAMA_TO_GATEWAY[requested]
    # Ollama tags always carry a ':'
    if provider_id == OLLAMA and ":" not in requested:
        return DEFAULT_MODELS[OLLAMA]
    return requested


@dataclass(frozen=True)
class ProviderDescriptor:
    provider_id: str
    priority: int
    resolver: CredentialResolver
    active: bool = True
    timeout_seconds: float = 60.0

    async def resolve(self) -> ResolvedCredential | None:
        return await self.resolver.resolve()

    def model_for(self, requested: str | None) -> str:
        return compatible_model(requested, self.provider_id)


class ProviderTable:
    """Immutable, priority-ordered provider configuration."""

    def __init__(self, descriptors: Iterable[ProviderDescriptor]):
        ordered = sorted(descriptors, key=lambda d: d.priority)
        ids = [d.provider_id for d in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate provider ids: {ids}")
        self._descriptors: tuple[ProviderDescriptor, ...] = tuple(ordered)

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(d.provider_id for d in self._descriptors)

    def candidates(self, exclude: Iterable[str] = ()) -> tuple[ProviderDescriptor, ...]:
        skip = frozenset(exclude)
        return tuple(d for d in self._descriptors if d.active and d.provider_id not in skip)


class ChainedCredentialResolver:
    def __init__(self, *resolvers: CredentialResolver):
        self.resolvers = resolvers

    async def resolve(self) -> ResolvedCredential | None:
        for resolver in self.resolvers:
            resolved = await resolver.resolve()
            if resolved is not None:
                return resolved
        return None


def build_default_providers(
    cfg: OrchestratorConfig,
    *,
    settings_store: SettingsStore | None = None,
) -> ProviderTable:
    keys = {
        LOVABLE_AI: cfg.lovable_api_key,
        OPENAI: cfg.openai_api_key,
        OPENROUTER: cfg.openrouter_api_key,
    }
    credential_file = EncryptedCredentialFile(cfg.credentials_path, cfg.fernet_key) if cfg.fernet_key else None

    def hosted(provider_id: str) -> CredentialResolver:
        static = StaticCredentialResolver(HOSTED_ENDPOINTS[provider_id], keys[provider_id])
        if credential_file is None:
            return static
        return ChainedCredentialResolver(
            static,
            EncryptedFileCredentialResolver(
                provider_id, credential_file, default_endpoint=HOSTED_ENDPOINTS[provider_id]
            ),
        )

    descriptors = [
        ProviderDescriptor(
            provider_id=OLLAMA,
            priority=1,
            resolver=SettingsStoreCredentialResolver(
                OLLAMA, settings_store, env_url=cfg.ollama_url, cloud_api_key=cfg.ollama_api_key
            ),
            timeout_seconds=cfg.ollama_timeout_seconds,
        ),
        ProviderDescriptor(LOVABLE_AI, 2, hosted(LOVABLE_AI), timeout_seconds=cfg.provider_timeout_seconds),
        ProviderDescriptor(OPENAI, 3, hosted(OPENAI), active=False, timeout_seconds=cfg.provider_timeout_seconds),
        ProviderDescriptor(
            OPENROUTER, 4, hosted(OPENROUTER), active=False, timeout_seconds=cfg.provider_timeout_seconds
        ),
    ]

    if cfg.enabled_providers:
        order = {pid: rank for rank, pid in enumerate(cfg.enabled_providers, start=1)}
        unknown = set(order) - {d.provider_id for d in descriptors}
        if unknown:
            log.warning("unknown_providers_ignored", providers=sorted(unknown))
        descriptors = [
            replace(d, active=d.provider_id in order, priority=order.get(d.provider_id, len(order) + d.priority))
            for d in descriptors
        ]

    return ProviderTable(descriptors)
