"""
HTTP API: FastAPI surface over the command pipeline.

Run:
  uvicorn api.server:app --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from domains.static.builder import recruiter_message
from intent.resolver import normalize_locale
from main import AppContext, build_pipeline
from ratelimit.limiter import AI_SCOPE, GLOBAL_SCOPE, RateDecision
from shared.errors import (
    AppError,
    AuthorizationError,
    ConfigurationMissing,
    RateLimitExceeded,
    RequestValidationError,
)
from shared.models import DEFAULT_LOCALE, SUPPORTED_LOCALES, ChatEvent

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


# ─── Request bodies ─────────────────────────────────────────────

class _Body(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class CommandRequest(BaseModel):
    model_config = {"extra": "ignore"}

    input: str | None = None
    locale: str | None = None
    lang: str | None = None
    camel_cid: str | None = Field(default=None, alias="conversationId")
    cid: str | None = None
    snake_cid: str | None = Field(default=None, alias="conversation_id")

    @property
    def resolved_conversation_id(self) -> str | None:
        return self.camel_cid or self.cid or self.snake_cid

    @property
    def resolved_locale(self) -> str | None:
        return self.locale or self.lang


class RagQueryRequest(_Body):
    query: str = ""
    match_count: int = Field(default=4, alias="matchCount", ge=1, le=50)
    min_similarity: float = Field(default=0.5, alias="minSimilarity", ge=-1.0, le=1.0)
    preferred_locale: str | None = Field(default=None, alias="preferredLocale")
    exact_locale: bool = Field(default=False, alias="exactLocale")


class IngestItem(_Body):
    content: str = ""


class RagIngestRequest(_Body):
    items: list[IngestItem] = Field(default_factory=list)


class BilingualIngestRequest(_Body):
    text: str = ""
    source_locale: str = Field(default="en", alias="sourceLocale")


class ChatMessageRequest(_Body):
    conversation_id: str | None = Field(default=None, alias="conversationId")
    author: str = "user"
    text: str = ""


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    raw = await request.body()
    if not raw.strip():
        payload: Any = {}
    else:
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise RequestValidationError("Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise RequestValidationError("JSON object body required")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise RequestValidationError(f"Invalid field '{field}': {first.get('msg', 'invalid')}") from e


# ─── Dependencies ───────────────────────────────────────────────

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_headers(decision: RateDecision) -> dict[str, str]:
    return {
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_seconds),
    }


def rate_limited(*scopes: str) -> Callable[..., RateDecision]:
    """Dependency that enforces scopes in order and stamps RateLimit-* headers."""

    def dependency(request: Request, response: Response) -> RateDecision:
        context: AppContext = request.app.state.context
        decisions = context.limiter.enforce(list(scopes), client_key(request))
        tightest = min(decisions, key=lambda d: d.remaining)
        response.headers.update(rate_headers(tightest))
        request.state.rate_decision = tightest
        return tightest

    return dependency


def require_admin(request: Request) -> None:
    """Constant-time check of the admin secret (header or ?token=)."""
    context: AppContext = request.app.state.context
    expected = context.settings.admin_token
    if not expected:
        raise ConfigurationMissing("ADMIN_TOKEN not configured on server")
    provided = request.headers.get("x-admin-token") or request.query_params.get("token") or ""
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("Forbidden")


global_limit = rate_limited(GLOBAL_SCOPE)
ai_limit = rate_limited(GLOBAL_SCOPE, AI_SCOPE)


# ─── Event stream ───────────────────────────────────────────────

async def event_stream(
    context: AppContext,
    conversation_id: str,
    is_disconnected: Callable[[], Any] | None = None,
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """NDJSON lines for one conversation. First line is the `connected` event."""
    queue: asyncio.Queue[ChatEvent] = asyncio.Queue()
    unsubscribe = context.bus.subscribe(conversation_id, queue.put_nowait)
    try:
        connected = ChatEvent(type="connected", conversation_id=conversation_id, timestamp=time.time())
        yield json.dumps(connected.to_wire(), ensure_ascii=False) + "\n"
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield "\n"
                continue
            yield json.dumps(event.to_wire(), ensure_ascii=False) + "\n"
    finally:
        unsubscribe()


# ─── Application ────────────────────────────────────────────────

def create_app(context_factory: Callable[[], AppContext] | None = None) -> FastAPI:
    factory = context_factory or build_pipeline

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        context = factory()
        _app.state.context = context
        await context.start()
        try:
            yield
        finally:
            await context.aclose()

    app = FastAPI(
        title="Terminal Command Orchestrator API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimitExceeded):
            headers = {
                "RateLimit-Limit": str(exc.limit),
                "RateLimit-Remaining": "0",
                "RateLimit-Reset": str(exc.reset_seconds),
                "Retry-After": str(exc.reset_seconds),
            }
        elif exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/status", dependencies=[Depends(global_limit)])
    def status(context: AppContext = Depends(get_context)) -> dict[str, Any]:
        return {
            "online": True,
            "hasAI": context.model_selector.is_configured,
            "now": int(time.time() * 1000),
            "env": context.settings.app_env,
            "locales": list(SUPPORTED_LOCALES),
        }

    @app.get("/api/status/ping", dependencies=[Depends(global_limit)])
    def ping() -> dict[str, Any]:
        return {"pong": True, "now": int(time.time() * 1000)}

    @app.get("/api/recruiter", dependencies=[Depends(global_limit)])
    def recruiter(lang: str = DEFAULT_LOCALE, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        locale = normalize_locale(lang) or DEFAULT_LOCALE
        logger.info("Recruiter mode accessed (locale=%s)", locale)
        return {"unlocked": True, "message": recruiter_message(locale, context.knowledge.load(locale))}

    @app.post("/api/command", dependencies=[Depends(ai_limit)])
    async def command(request: Request, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        body: CommandRequest = await _parse_body(request, CommandRequest)
        result = await context.orchestrator.handle(
            body.input,
            locale=body.resolved_locale,
            conversation_id=body.resolved_conversation_id,
        )
        return {
            "responseText": result.response_text,
            "conversationId": result.conversation_id,
            "status": result.status,
        }

    @app.post("/api/rag/query", dependencies=[Depends(ai_limit)])
    async def rag_query(request: Request, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        body: RagQueryRequest = await _parse_body(request, RagQueryRequest)
        if not body.query.strip():
            raise RequestValidationError("query required")
        if not context.assembler.enabled:
            raise ConfigurationMissing("Retrieval is not configured (vector store and embeddings required)")
        outcome = await context.assembler.search(
            body.query.strip(),
            match_count=body.match_count,
            min_similarity=body.min_similarity,
            preferred_locale=normalize_locale(body.preferred_locale),
            exact=body.exact_locale,
        )
        return {
            "results": [result.to_wire() for result in outcome.results],
            "strategyUsed": outcome.strategy_used,
        }

    @app.post("/api/rag/ingest", dependencies=[Depends(ai_limit), Depends(require_admin)])
    async def rag_ingest(request: Request, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        body: RagIngestRequest = await _parse_body(request, RagIngestRequest)
        if not body.items:
            raise RequestValidationError("items[] required")
        inserted, table = await context.ingestor.ingest([item.content for item in body.items])
        return {"insertedCount": inserted, "table": table}

    @app.post("/api/rag/bilingual-ingest", dependencies=[Depends(ai_limit), Depends(require_admin)])
    async def rag_bilingual_ingest(request: Request, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        body: BilingualIngestRequest = await _parse_body(request, BilingualIngestRequest)
        if not body.text.strip():
            raise RequestValidationError("text required")
        source = normalize_locale(body.source_locale) or DEFAULT_LOCALE
        inserted, table, locales = await context.ingestor.ingest_bilingual(body.text, source)
        return {"insertedCount": inserted, "table": table, "locales": locales}

    @app.post("/api/chat/message", dependencies=[Depends(ai_limit)])
    async def chat_message(request: Request, context: AppContext = Depends(get_context)) -> dict[str, Any]:
        body: ChatMessageRequest = await _parse_body(request, ChatMessageRequest)
        if not body.text:
            raise RequestValidationError("text required")
        cid = context.conversations.log_message(body.conversation_id, body.author or "user", body.text)
        return {"ok": True, "conversationId": cid}

    @app.get("/api/chat/events/{conversation_id}")
    async def chat_events(
        conversation_id: str,
        request: Request,
        decision: RateDecision = Depends(ai_limit),
        context: AppContext = Depends(get_context),
    ) -> StreamingResponse:
        headers = {"Cache-Control": "no-cache", **rate_headers(decision)}
        return StreamingResponse(
            event_stream(context, conversation_id, request.is_disconnected),
            media_type=NDJSON_MEDIA_TYPE,
            headers=headers,
        )

    @app.get("/api/chat/health", dependencies=[Depends(ai_limit)])
    def chat_health(context: AppContext = Depends(get_context)) -> dict[str, Any]:
        active = context.bus.active_conversations()
        return {
            "ok": True,
            "hasAI": context.model_selector.is_configured,
            "stream": {
                "active": active,
                "totalSubscribers": sum(int(item["subscribers"]) for item in active),
            },
            "conversations": len(context.conversation_store),
            "bridge": context.bridge_status(),
            "nonCriticalFailures": context.errors.snapshot(),
        }

    return app


app = create_app()
