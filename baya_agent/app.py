from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .agent_pipeline import SalesAgent
from .catalog import CatalogLoader
from .config import Settings, load_settings
from .models import ChatRequest, ChatResponse, ChatResponseMeta, ProbeResult
from .openai_client import OpenAIClient, OpenAIClientError
from .prompt_loader import load_prompt
from .reply_composer import FALLBACK_REPLY, ModelComposer, TemplateComposer
from .session_store import DEFAULT_SESSION_ID, SessionStore
from .utils import safe_json_loads

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("baya").setLevel(log_level)
logger = logging.getLogger("baya.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

CORS_METHODS = "GET,POST,OPTIONS"
CORS_HEADERS = "Content-Type"


def _fallback_response(session_id: Optional[str], buyer_name: Optional[str] = None) -> JSONResponse:
    meta = ChatResponseMeta(buyerName=buyer_name, sessionId=session_id or DEFAULT_SESSION_ID)
    body = ChatResponse(reply=FALLBACK_REPLY, items=[], meta=meta)
    return JSONResponse(status_code=200, content=body.model_dump())


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Purpose: Build the FastAPI app with its catalog, sessions, and routes.
    Inputs/Outputs: Inputs are optional Settings (env by default) and an optional
        httpx transport for the external API; output is the app.
    Side Effects / State: Loads the catalog once; creates the in-memory session store.
    Dependencies: Uses CatalogLoader, SessionStore, OpenAIClient, composers, SalesAgent.
    Failure Modes: Catalog problems degrade to an empty catalog; a missing prompt
        file raises at startup.
    If Removed: There is no HTTP surface.
    Testing Notes: Call with tmp catalog settings and a MockTransport.
    """
    # Wire collaborators once; handlers close over them.
    settings = settings or load_settings()
    catalog = CatalogLoader(settings.catalog_path).load()
    sessions = SessionStore(ttl_sec=settings.session_ttl_sec, max_sessions=settings.max_sessions)
    client = OpenAIClient(settings, transport=transport)
    if settings.reply_strategy == "template":
        composer = TemplateComposer()
    else:
        composer = ModelComposer(client, settings.prompts_dir, history_limit=settings.history_limit)
    agent = SalesAgent(catalog=catalog, sessions=sessions, composer=composer, settings=settings)
    allowed_origins = set(settings.allowed_origins)

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; model replies and voice sessions will fall back")
    logger.info(
        "app_ready strategy=%s catalog=%d origins=%s",
        settings.reply_strategy,
        len(catalog),
        ",".join(sorted(allowed_origins)) or "*",
    )

    app = FastAPI(title="BAYA Gallery Sales Agent")
    app.state.settings = settings
    app.state.agent = agent
    app.state.sessions = sessions
    app.state.client = client

    @app.middleware("http")
    async def cors(request: Request, call_next):
        """Purpose: Apply the origin allow-list and answer preflight requests.
        Inputs/Outputs: Input is the request; output is the downstream response with
            CORS headers, 204 for OPTIONS, or 403 for a disallowed origin.
        Side Effects / State: None.
        Dependencies: Uses allowed_origins from Settings.
        Failure Modes: None.
        If Removed: Browsers on other origins cannot call the API.
        Testing Notes: OPTIONS returns 204 with headers; a foreign origin gets 403.
        """
        # An empty allow-list admits every origin.
        origin = request.headers.get("origin")
        if origin and allowed_origins and origin.rstrip("/") not in allowed_origins:
            logger.info("cors_rejected origin=%s path=%s", origin, request.url.path)
            return PlainTextResponse("Forbidden", status_code=403)
        if request.method == "OPTIONS":
            response: Response = Response(status_code=204)
        else:
            response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = origin or "*"
        response.headers["Access-Control-Allow-Methods"] = CORS_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_HEADERS
        if origin:
            response.headers["Vary"] = "Origin"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> Response:
        """Purpose: Render routing errors as plain text.
        Inputs/Outputs: Inputs are the request and the HTTP exception; output is a
            text/plain response.
        Side Effects / State: None.
        Dependencies: Registered for StarletteHTTPException.
        Failure Modes: None; other statuses keep their code and detail.
        If Removed: Unknown paths answer with FastAPI's JSON 404 and wrong
            methods with 405.
        Testing Notes: GET /nope and POST /health both give 404 "Not found".
        """
        # Unknown routes and wrong methods both read as "Not found".
        if exc.status_code in (404, 405):
            return PlainTextResponse("Not found", status_code=404)
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.get("/health")
    async def health() -> PlainTextResponse:
        """Purpose: Report liveness and whether the API credential is configured.
        Inputs/Outputs: No inputs; output is text/plain "ok" or "missing_openai_key".
        Side Effects / State: None; no outbound call.
        Dependencies: Uses OpenAIClient.has_credential.
        Failure Modes: None.
        If Removed: Deploy checks cannot tell a missing key from a dead process.
        Testing Notes: Build the app with an empty key and expect "missing_openai_key".
        """
        return PlainTextResponse("ok" if client.has_credential else "missing_openai_key")

    @app.get("/health/openai")
    async def health_openai() -> ProbeResult:
        """Purpose: Report whether the external model API answers.
        Inputs/Outputs: No inputs; output is {reachable, status} JSON.
        Side Effects / State: One GET /models request via OpenAIClient.probe.
        Dependencies: Uses OpenAIClient.probe.
        Failure Modes: None; transport errors give reachable false and status null.
        If Removed: Operators cannot check upstream reachability from the service.
        Testing Notes: A 401 from a MockTransport still reports reachable true.
        """
        reachable, status = await client.probe()
        return ProbeResult(reachable=reachable, status=status)

    @app.post("/api/chat")
    async def chat(request: Request) -> JSONResponse:
        """Purpose: Handle one chat message and return reply, items, and meta.
        Inputs/Outputs: Input is the raw JSON body ({message, history?, meta?});
            output is {reply, items, meta} with status 200.
        Side Effects / State: Updates the caller's session via SalesAgent.
        Dependencies: Uses safe_json_loads, ChatRequest validation, SalesAgent.
        Failure Modes: Malformed JSON, invalid shapes, and unexpected pipeline errors
            are logged and answered with FALLBACK_REPLY and empty items.
        If Removed: The chat widget has no backend.
        Testing Notes: Send "not json" and expect 200 with the fallback reply.
        """
        # Parse leniently so a bad body still gets a friendly answer.
        data = safe_json_loads(await request.body())
        if data is None:
            logger.warning("chat_bad_json")
            return _fallback_response(None)
        try:
            payload = ChatRequest.model_validate(data)
        except ValidationError as exc:
            logger.warning("chat_invalid_payload errors=%d", exc.error_count())
            return _fallback_response(None)

        session_id = payload.meta.sessionId
        try:
            context = await agent.handle_message(
                session_id,
                payload.message,
                history=[message.model_dump() for message in payload.history],
                buyer_name=payload.meta.buyerName,
            )
        except Exception:
            logger.exception("chat_failed session=%s", session_id)
            return _fallback_response(session_id, payload.meta.buyerName)

        body = ChatResponse(
            reply=context.reply,
            items=context.items,
            meta=ChatResponseMeta(
                buyerName=context.slots.get("name"),
                sessionId=context.session_id,
                coupon=context.coupon.code,
            ),
        )
        return JSONResponse(status_code=200, content=body.model_dump())

    @app.post("/api/realtime/session")
    async def realtime_session() -> JSONResponse:
        """Proxy an ephemeral voice-session request and relay the JSON verbatim."""
        try:
            instructions = load_prompt(settings.prompts_dir / "realtime_instructions.txt")
        except OSError:
            instructions = ""
        try:
            data = await client.create_realtime_session(instructions)
        except OpenAIClientError as exc:
            logger.warning("realtime_session_failed status=%s error=%s", exc.status_code, exc)
            return JSONResponse(status_code=500, content={"error": "session_failed"})
        return JSONResponse(status_code=200, content=data)

    return app


def main() -> None:
    """Run the API with uvicorn on HOST:PORT."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=log_level_name.lower())


if __name__ == "__main__":
    main()
