from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from .alerts import AlertSender, LogAlertSender, WebhookAlertSender
from .background import BackgroundTasks
from .cache import CacheGateway
from .config import OrchestratorConfig
from .dispatcher import ProviderDispatcher
from .enrichment import EnrichmentOrchestrator
from .providers import ProviderTable, build_default_providers
from .repair import RepairLoop
from .store import InMemoryStore, RedisStore
from .tool_proxy import HttpToolHandler, IntegrationRegistry, StaticIntegrationRegistry, ToolHandler, ToolProxy
from .transport import ChatCompletionsClient

log = structlog.get_logger()


@dataclass
class Runtime:
    cfg: OrchestratorConfig
    store: Any
    transport: ChatCompletionsClient
    dispatcher: ProviderDispatcher
    repair_loop: RepairLoop
    orchestrator: EnrichmentOrchestrator
    tool_proxy: ToolProxy
    background: BackgroundTasks
    closeables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.background.drain()
        for resource in self.closeables:
            await resource.close()


def build_runtime(
    cfg: OrchestratorConfig | None = None,
    *,
    store: Any = None,
    providers: ProviderTable | None = None,
    http_client: httpx.AsyncClient | None = None,
    integrations: IntegrationRegistry | None = None,
    handlers: dict[str, ToolHandler] | None = None,
    alerts: AlertSender | None = None,
) -> Runtime:
    cfg = cfg or OrchestratorConfig()
    closeables: list[Any] = []

    if store is None:
        if cfg.redis_url:
            store = RedisStore.from_url(cfg.redis_url)
            closeables.append(store)
        else:
            store = InMemoryStore()
    log.info("runtime_store", backend=type(store).__name__)

    transport = ChatCompletionsClient(
        client=http_client,
        max_retries=cfg.retry_max_retries,
        initial_delay_seconds=cfg.retry_initial_delay_seconds,
        default_temperature=cfg.default_temperature,
        default_max_tokens=cfg.default_max_tokens,
    )
    if http_client is None:
        closeables.append(transport)

    dispatcher = ProviderDispatcher(providers or build_default_providers(cfg, settings_store=store), transport=transport)
    repair_loop = RepairLoop(
        dispatcher,
        excluded_providers=cfg.repair_excluded_providers,
        temperature=cfg.repair_temperature,
    )
    cache = CacheGateway(store)
    orchestrator = EnrichmentOrchestrator(
        dispatcher, repair_loop, cache=cache, cache_ttl_minutes=cfg.completion_cache_ttl_minutes
    )

    if alerts is None:
        if cfg.alert_webhook_url:
            alerts = WebhookAlertSender(cfg.alert_webhook_url)
            closeables.append(alerts)
        else:
            alerts = LogAlertSender()

    if handlers is None:
        http_handler = HttpToolHandler()
        closeables.append(http_handler)
        handlers = {"http": http_handler}

    background = BackgroundTasks()
    tool_proxy = ToolProxy(
        integrations or StaticIntegrationRegistry(),
        handlers,
        cache=cache,
        rate_limits=store,
        audit=store,
        alerts=alerts,
        background=background,
        cfg=cfg,
    )
    return Runtime(
        cfg=cfg,
        store=store,
        transport=transport,
        dispatcher=dispatcher,
        repair_loop=repair_loop,
        orchestrator=orchestrator,
        tool_proxy=tool_proxy,
        background=background,
        closeables=closeables,
    )
