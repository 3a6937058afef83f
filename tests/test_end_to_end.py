import json

import httpx
import pytest

from enrichment_orchestrator.cache import CacheGateway
from enrichment_orchestrator.contracts import CompletionRequest, ErrorKind, Failure
from enrichment_orchestrator.credentials import StaticCredentialResolver
from enrichment_orchestrator.dispatcher import ProviderDispatcher
from enrichment_orchestrator.enrichment import EnrichmentOrchestrator
from enrichment_orchestrator.prompts import REPAIR_SYSTEM_PROMPT
from enrichment_orchestrator.providers import OLLAMA, ProviderDescriptor, ProviderTable
from enrichment_orchestrator.repair import RepairLoop
from enrichment_orchestrator.store import InMemoryStore
from enrichment_orchestrator.transport import ChatCompletionsClient
from enrichment_orchestrator.validation import PRODUCT_ANALYSIS_SCHEMA

_TITLE = "Acme Blender 3000 - 1200 W Glass Jug Blender for Smoothies"


class _Upstream:
    """ollama is down; cloud-a answers the analysis and single-field repairs."""

    def __init__(self, analysis: dict, *, ollama_status: int = 503):
        self.analysis = analysis
        self.ollama_status = ollama_status
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.calls.append(host)
        if host == "ollama.test":
            return httpx.Response(self.ollama_status)
        body = json.loads(request.content)
        if body["messages"][0]["content"] == REPAIR_SYSTEM_PROMPT:
            content = json.dumps({"title": _TITLE})
        else:
            content = "```json\n" + json.dumps(self.analysis) + "\n```"
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _orchestrator(upstream, no_sleep, **kwargs) -> EnrichmentOrchestrator:
    table = ProviderTable(
        [
            ProviderDescriptor(
                OLLAMA, 1, StaticCredentialResolver("http://ollama.test/v1/chat/completions", None, require_key=False)
            ),
            ProviderDescriptor("cloud-a", 2, StaticCredentialResolver("https://cloud-a.test/v1/chat/completions", "k")),
        ]
    )
    transport = ChatCompletionsClient(client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)), sleeper=no_sleep)
    dispatcher = ProviderDispatcher(table, transport=transport)
    return EnrichmentOrchestrator(dispatcher, RepairLoop(dispatcher), **kwargs)


@pytest.mark.asyncio
async def test_fallback_then_repair_of_missing_title(no_sleep, complete_product):
    del complete_product["seo"]["title"]
    upstream = _Upstream(complete_product)
    orchestrator = _orchestrator(upstream, no_sleep)

    outcome = await orchestrator.enrich(
        CompletionRequest.from_prompt("Analyse product X"), PRODUCT_ANALYSIS_SCHEMA, product={"productName": "X"}
    )

    assert outcome.success
    assert outcome.completion.provider_id == "cloud-a"
    assert outcome.result["seo"]["title"] == _TITLE
    assert outcome.result["_incomplete"] is False
    assert outcome.result["_missing_fields"] == []
    assert outcome.result["_retry_summary"]["processed_fields"] == ["seo.title"]
    assert outcome.validation.is_valid
    assert outcome.result["_validation"]["completenessScore"] == 100
    # analysis + one repair, each trying ollama first
    assert upstream.calls == ["ollama.test", "cloud-a.test", "ollama.test", "cloud-a.test"]


@pytest.mark.asyncio
async def test_complete_result_skips_repair(no_sleep, complete_product):
    upstream = _Upstream(complete_product)
    outcome = await _orchestrator(upstream, no_sleep).enrich(
        CompletionRequest.from_prompt("Analyse"), PRODUCT_ANALYSIS_SCHEMA
    )
    assert outcome.result["_incomplete"] is False
    assert outcome.result["_missing_fields"] == []
    assert "_retry_summary" not in outcome.result
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_fatal_provider_error_is_returned_unchanged(no_sleep, complete_product):
    upstream = _Upstream(complete_product, ollama_status=401)
    outcome = await _orchestrator(upstream, no_sleep).enrich(
        CompletionRequest.from_prompt("Analyse"), PRODUCT_ANALYSIS_SCHEMA
    )
    assert not outcome.success
    assert isinstance(outcome.completion, Failure)
    assert outcome.completion.error_kind is ErrorKind.AUTH_ERROR
    assert outcome.result is None
    assert upstream.calls == ["ollama.test"]


@pytest.mark.asyncio
async def test_prose_answer_is_a_failure(no_sleep):
    class _Prose(_Upstream):
        def __call__(self, request):
            self.calls.append(request.url.host)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Sorry, I cannot help."}}]})

    outcome = await _orchestrator(_Prose({}), no_sleep).enrich(
        CompletionRequest.from_prompt("Analyse"), PRODUCT_ANALYSIS_SCHEMA
    )
    assert not outcome.success
    assert outcome.completion.error_kind is ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_completion_cache_reuses_successful_dispatch(no_sleep, complete_product):
    upstream = _Upstream(complete_product)
    orchestrator = _orchestrator(upstream, no_sleep, cache=CacheGateway(InMemoryStore()), cache_ttl_minutes=5)
    request = CompletionRequest.from_prompt("Analyse")

    first = await orchestrator.enrich(request, PRODUCT_ANALYSIS_SCHEMA)
    second = await orchestrator.enrich(request, PRODUCT_ANALYSIS_SCHEMA)

    assert (first.cached, second.cached) == (False, True)
    assert second.result == first.result
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_completion_cache_does_not_store_failures(no_sleep, complete_product):
    store = InMemoryStore()
    upstream = _Upstream(complete_product, ollama_status=401)
    orchestrator = _orchestrator(upstream, no_sleep, cache=CacheGateway(store), cache_ttl_minutes=5)

    outcome = await orchestrator.enrich(CompletionRequest.from_prompt("Analyse"), PRODUCT_ANALYSIS_SCHEMA)

    assert not outcome.success
    assert store.cache == {}
