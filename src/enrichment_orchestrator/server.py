from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager

from .config import OrchestratorConfig
from .errors import (
    AuthenticationError,
    ConfigurationError,
    OrchestratorError,
    RequestTimeoutError,
    UpstreamProtocolError,
)
from .http_security import install_middlewares, parse_user_id
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_requests_total
from .runtime import Runtime, build_runtime
from .schemas import CompletionRequestBody, ToolCallBody, ValidateRequestBody, make_error_response
from .tool_proxy import RateLimitRejection
from .validation import SECTION_KINDS, check_enrichment_section, get_schema, validate


def create_app(cfg: OrchestratorConfig | None = None, runtime: Runtime | None = None):
    try:
        from fastapi import FastAPI, Header
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or (runtime.cfg if runtime is not None else OrchestratorConfig())
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=cfg.secrets(),
        max_value_chars=cfg.log_max_value_chars,
    )
    runtime = runtime or build_runtime(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _error(request, *, status_code: int, type: str, message: str):
        server_errors_total.labels(type=type).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_error_response(message=message, type=type, code=_request_id(request)),
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await runtime.aclose()

    app = FastAPI(title="enrichment-orchestrator", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request, exc: ConfigurationError):
        return _error(request, status_code=400, type="invalid_request_error", message=str(exc))

    @app.exception_handler(AuthenticationError)
    async def _auth_error_handler(request, exc: AuthenticationError):
        return _error(request, status_code=401, type="authentication_error", message=str(exc))

    @app.exception_handler(UpstreamProtocolError)
    async def _upstream_error_handler(request, exc: UpstreamProtocolError):
        return _error(request, status_code=502, type="upstream_error", message=str(exc))

    @app.exception_handler(RequestTimeoutError)
    async def _timeout_error_handler(request, exc: RequestTimeoutError):
        return _error(request, status_code=504, type="upstream_error", message=str(exc) or "Request timed out.")

    @app.exception_handler(OrchestratorError)
    async def _orchestrator_error_handler(request, exc: OrchestratorError):
        return _error(request, status_code=500, type="api_error", message=str(exc))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/completions")
    async def completions(req: CompletionRequestBody):
        started_at = time.monotonic()
        result = await runtime.dispatcher.dispatch(req.to_request(), exclude=req.exclude_providers)
        server_requests_total.labels(path="/v1/completions", status="200").inc()
        payload = result.to_dict()
        payload["latencyMs"] = int((time.monotonic() - started_at) * 1000)
        return payload

    @app.post("/v1/validate/{kind}")
    async def validate_result(kind: str, req: ValidateRequestBody):
        if kind in SECTION_KINDS:
            check = check_enrichment_section(kind, req.result)
            return {"isValid": check.is_valid, "issues": list(check.issues)}
        return validate(req.result, get_schema(kind)).to_dict()

    @app.post("/v1/tools/{integration_id}/{tool}")
    async def call_tool(
        integration_id: str,
        tool: str,
        req: ToolCallBody,
        x_user_id: str | None = Header(default=None),
    ):
        user_id = parse_user_id(x_user_id)
        if user_id is None:
            raise AuthenticationError("Missing or invalid X-User-Id header.")
        response = await runtime.tool_proxy.call(user_id, integration_id, tool, req.arguments)
        path = "/v1/tools"
        if isinstance(response, RateLimitRejection):
            server_requests_total.labels(path=path, status="429").inc()
            return JSONResponse(status_code=429, content=response.to_dict(), headers=response.headers())
        status_code = 200 if response.success else 502
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        return JSONResponse(status_code=status_code, content=response.to_dict())

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("enrichment_orchestrator.server:create_app", host=host, port=port, factory=True)


if __name__ == "__main__":  # pragma: no cover
    main()
