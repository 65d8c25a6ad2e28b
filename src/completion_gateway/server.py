from __future__ import annotations

import os
from contextlib import asynccontextmanager

from .analysis import AnalysisReport
from .config import GatewayConfig
from .errors import ConfigurationError, DispatchError, GatewayError
from .gateway import CompletionGateway
from .http_security import install_middlewares
from .logging import configure_logging
from .mentor import JournalAnalysisRequest
from .metrics import maybe_start_metrics, server_errors_total, server_requests_total
from .openai_compat import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    PromptSuggestionRequest,
    PromptSuggestionResponse,
    ProviderUpdate,
    make_chat_completion_response,
    make_error_response,
)
from .streaming import sse_from_text_stream


def create_app(cfg: GatewayConfig | None = None, gateway: CompletionGateway | None = None):
    try:
        from fastapi import FastAPI
        from fastapi.responses import JSONResponse, StreamingResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or (gateway.cfg if gateway is not None else GatewayConfig())
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    gateway = gateway or CompletionGateway(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await gateway.close()

    app = FastAPI(
        title="completion-gateway",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(DispatchError)
    async def _dispatch_error_handler(request, exc: DispatchError):
        server_errors_total.labels(type=exc.kind).inc()
        return JSONResponse(
            status_code=503,
            content=make_error_response(
                message=str(exc),
                type="upstream_unavailable",
                code=_request_id(request),
                errors=list(exc.errors),
            ),
        )

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request, exc: ConfigurationError):
        server_errors_total.labels(type="invalid_request_error").inc()
        return JSONResponse(
            status_code=400,
            content=make_error_response(message=str(exc), type="invalid_request_error", code=_request_id(request)),
        )

    @app.exception_handler(GatewayError)
    async def _gateway_error_handler(request, exc: GatewayError):
        server_errors_total.labels(type="api_error").inc()
        return JSONResponse(
            status_code=500,
            content=make_error_response(message=str(exc), type="api_error", code=_request_id(request)),
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/health")
    async def upstream_health() -> dict:
        await gateway.health.is_healthy()
        status = gateway.health_status()
        status["last_check"] = status["last_check"].isoformat()
        return status

    @app.post("/v1/chat/completions", response_model=ChatCompletionResponse)
    async def chat_completions(req: ChatCompletionRequest):
        if len(req.messages) > cfg.max_messages:
            raise ConfigurationError("Too many messages.")
        if sum(len(m.content) for m in req.messages) > cfg.max_total_message_chars:
            raise ConfigurationError("Message content too large.")

        request = req.to_completion_request(default_temperature=cfg.default_temperature, default_top_p=cfg.default_top_p)
        result = await gateway.dispatcher.dispatch(request)
        server_requests_total.labels(path="/v1/chat/completions", status="200").inc()

        if req.stream:
            # Failover needs the whole reply, so the assembled text goes out as one chunk.
            async def _text():
                yield result.text

            headers = {"X-Gateway-Provider": result.provider_used, "X-Gateway-Attempts": str(result.attempt_count)}
            return StreamingResponse(
                sse_from_text_stream(model=result.provider_used, text_stream=_text()),
                media_type="text/event-stream",
                headers=headers,
            )
        return make_chat_completion_response(result)

    @app.post("/v1/journal/analysis", response_model=AnalysisReport)
    async def journal_analysis(req: JournalAnalysisRequest) -> AnalysisReport:
        report = await gateway.analyzer.analyze(req)
        server_requests_total.labels(path="/v1/journal/analysis", status=report.source).inc()
        return report

    @app.post("/v1/journal/prompts", response_model=PromptSuggestionResponse)
    async def journal_prompts(req: PromptSuggestionRequest) -> PromptSuggestionResponse:
        prompts = await gateway.analyzer.suggest_prompts(req.history, req.mood)
        return PromptSuggestionResponse(prompts=prompts)

    @app.get("/v1/providers")
    async def list_providers() -> list[dict]:
        return gateway.registry.model_status()

    @app.patch("/v1/providers/{provider_id:path}")
    async def update_provider(provider_id: str, update: ProviderUpdate):
        if update.active is None and update.priority is None:
            raise ConfigurationError("Provide 'active' and/or 'priority'.")
        found = True
        if update.active is not None:
            found = gateway.registry.set_active(provider_id, update.active)
        if found and update.priority is not None:
            found = gateway.registry.set_priority(provider_id, update.priority)
        if not found:
            return JSONResponse(
                status_code=404,
                content=make_error_response(message=f"Unknown provider {provider_id!r}.", type="not_found"),
            )
        return gateway.registry.model_status()

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("completion_gateway.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
