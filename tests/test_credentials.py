import pytest
from cryptography.fernet import Fernet

from enrichment_orchestrator.config import OrchestratorConfig
from enrichment_orchestrator.credentials import (
    EncryptedCredentialFile,
    EncryptedFileCredentialResolver,
    SettingsStoreCredentialResolver,
    decrypt_bytes,
    encrypt_bytes,
)
from enrichment_orchestrator.providers import LOVABLE_AI, OLLAMA, OPENAI, OPENROUTER, build_default_providers
from enrichment_orchestrator.store import InMemoryStore


def test_encrypt_decrypt_roundtrip():
    key = Fernet.generate_key().decode("utf-8")
    token = encrypt_bytes(key, b"hello")
    assert token != b"hello"
    assert decrypt_bytes(key, token) == b"hello"


def test_decrypt_with_wrong_key_raises_value_error():
    token = encrypt_bytes(Fernet.generate_key().decode("utf-8"), b"hello")
    with pytest.raises(ValueError):
        decrypt_bytes(Fernet.generate_key().decode("utf-8"), token)


@pytest.mark.asyncio
async def test_encrypted_file_resolver(tmp_path):
    key = Fernet.generate_key().decode("utf-8")
    cred_file = EncryptedCredentialFile(str(tmp_path / "creds.enc"), key)

    resolver = EncryptedFileCredentialResolver(OPENAI, cred_file, default_endpoint="https://api.test/v1/chat/completions")
    assert await resolver.resolve() is None

    cred_file.save({OPENAI: {"api_key": "sk-file"}})
    assert b"sk-file" not in (tmp_path / "creds.enc").read_bytes()

    resolved = await resolver.resolve()
    assert resolved.api_key == "sk-file"
    assert resolved.endpoint == "https://api.test/v1/chat/completions"
    assert await EncryptedFileCredentialResolver(OPENROUTER, cred_file).resolve() is None


@pytest.mark.asyncio
async def test_settings_resolver_prefers_active_self_hosted_row():
    store = InMemoryStore(
        provider_settings={OLLAMA: {"is_active": "true", "base_url": "http://gpu.lan:11434/", "api_key": "own"}}
    )
    resolver = SettingsStoreCredentialResolver(OLLAMA, store, env_url="http://env:11434", cloud_api_key="cloud")
    resolved = await resolver.resolve()
    assert resolved.endpoint == "http://gpu.lan:11434/v1/chat/completions"
    assert resolved.api_key == "own"


@pytest.mark.asyncio
async def test_settings_resolver_cloud_row_uses_environment_key():
    store = InMemoryStore(provider_settings={OLLAMA: {"is_active": True, "ollama_url": "https://ollama.com"}})
    resolver = SettingsStoreCredentialResolver(OLLAMA, store, cloud_api_key="cloud")
    resolved = await resolver.resolve()
    assert resolved.endpoint == "https://ollama.com/v1/chat/completions"
    assert resolved.headers()["Authorization"] == "Bearer cloud"


@pytest.mark.asyncio
async def test_settings_resolver_falls_back_to_environment_url():
    inactive = InMemoryStore(provider_settings={OLLAMA: {"is_active": "false", "base_url": "http://gpu.lan"}})
    resolver = SettingsStoreCredentialResolver(OLLAMA, inactive, env_url="http://env:11434/")
    resolved = await resolver.resolve()
    assert resolved.endpoint == "http://env:11434/v1/chat/completions"
    assert "Authorization" not in resolved.headers()

    assert await SettingsStoreCredentialResolver(OLLAMA, InMemoryStore()).resolve() is None


@pytest.mark.asyncio
async def test_settings_lookup_failure_skips_provider():
    class _Broken:
        async def get_provider_settings(self, provider_id):
            raise RuntimeError("db down")

    resolver = SettingsStoreCredentialResolver(OLLAMA, _Broken(), env_url="http://env:11434")
    assert await resolver.resolve() is None


def _cfg(**overrides) -> OrchestratorConfig:
    base = dict(
        lovable_api_key=None,
        openai_api_key=None,
        openrouter_api_key=None,
        ollama_url=None,
        ollama_api_key=None,
        fernet_key=None,
        enabled_providers=[],
    )
    base.update(overrides)
    return OrchestratorConfig(**base)


def test_default_provider_table_order():
    table = build_default_providers(_cfg(ollama_timeout_seconds=15, provider_timeout_seconds=60))
    assert table.ids == (OLLAMA, LOVABLE_AI, OPENAI, OPENROUTER)
    assert [d.provider_id for d in table.candidates()] == [OLLAMA, LOVABLE_AI]
    descriptors = {d.provider_id: d for d in table}
    assert descriptors[OLLAMA].timeout_seconds == 15
    assert descriptors[LOVABLE_AI].timeout_seconds == 60


def test_enabled_providers_reorders_and_activates():
    table = build_default_providers(_cfg(enabled_providers=[OPENROUTER, LOVABLE_AI]))
    assert [d.provider_id for d in table.candidates()] == [OPENROUTER, LOVABLE_AI]
    assert [d.provider_id for d in table.candidates(exclude=[OPENROUTER])] == [LOVABLE_AI]


@pytest.mark.asyncio
async def test_hosted_provider_without_key_resolves_to_nothing(tmp_path):
    table = {d.provider_id: d for d in build_default_providers(_cfg(lovable_api_key="lk"))}
    assert (await table[LOVABLE_AI].resolve()).api_key == "lk"
    assert await table[OPENAI].resolve() is None

    key = Fernet.generate_key().decode("utf-8")
    path = tmp_path / "creds.enc"
    EncryptedCredentialFile(str(path), key).save({OPENAI: {"api_key": "sk-file"}})
    chained = {d.provider_id: d for d in build_default_providers(_cfg(fernet_key=key, credentials_path=str(path)))}
    resolved = await chained[OPENAI].resolve()
    assert resolved.api_key == "sk-file"
    assert resolved.endpoint == "https://api.openai.com/v1/chat/completions"
