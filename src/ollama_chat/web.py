"""FastAPI relay between chat clients and the local Ollama server."""

import logging
from contextlib import asynccontextmanager

import httpx
import ollama
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ollama_chat.config import AppConfig
from ollama_chat.errors import OllamaUnavailableError, UpstreamHTTPError
from ollama_chat.models import ConversationTurn
from ollama_chat.relay import build_upstream_messages, open_upstream, relay_frames

logger = logging.getLogger(__name__)

_config = AppConfig()


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create the shared upstream HTTP clients on startup."""
    cfg = _config.ollama
    timeout = httpx.Timeout(cfg.read_timeout, connect=cfg.connect_timeout)
    application.state.http_client = httpx.AsyncClient(timeout=timeout)
    application.state.ollama_client = ollama.AsyncClient(host=cfg.base_url, timeout=timeout)
    logger.info("Relaying chat requests to Ollama at %s", cfg.base_url)
    try:
        yield
    finally:
        await application.state.http_client.aclose()


app = FastAPI(
    title="Ollama Chat Relay",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

router = APIRouter()


def get_http_client(request: Request):
    """FastAPI dependency — return the shared httpx client from app state."""
    return getattr(request.app.state, "http_client", None)


def get_ollama_client(request: Request):
    """FastAPI dependency — return the ollama library client from app state."""
    return getattr(request.app.state, "ollama_client", None)


class ChatRequest(BaseModel):
    messages: list[ConversationTurn]
    model: str | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class ModelInfo(BaseModel):
    name: str
    size: int
    modified_at: str


class ModelListResponse(BaseModel):
    models: list[ModelInfo]


class HealthResponse(BaseModel):
    status: str
    ollama_connected: bool


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"error": f"Invalid request: {exc.errors()}"})


@router.post("/chat")
async def api_chat(body: ChatRequest, http_client=Depends(get_http_client)):
    if http_client is None:
        return JSONResponse(status_code=503, content={"error": "Relay not initialized"})

    model = body.model or _config.ollama.default_model
    messages = build_upstream_messages(body.messages, body.system_prompt)

    try:
        upstream = await open_upstream(http_client, _config.ollama.base_url, model, messages)
    except OllamaUnavailableError as exc:
        logger.error("Ollama unreachable: %s", exc.details or exc.message)
        return JSONResponse(status_code=503, content={"error": exc.message})
    except UpstreamHTTPError as exc:
        logger.error("Ollama returned HTTP %d: %s", exc.status_code, exc.message)
        return JSONResponse(status_code=502, content={"error": exc.message})

    return StreamingResponse(
        relay_frames(upstream, _config.relay.max_line_length),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _model_info(entry) -> ModelInfo:
    modified = entry.modified_at
    return ModelInfo(
        name=entry.model or "",
        size=int(entry.size or 0),
        modified_at=modified.isoformat() if modified else "",
    )


@router.get("/models", response_model=ModelListResponse)
async def api_models(ollama_client=Depends(get_ollama_client)):
    try:
        listing = await ollama_client.list()
    except Exception as exc:
        logger.warning("Could not list Ollama models: %s", exc)
        return JSONResponse(status_code=502, content={"models": []})

    return ModelListResponse(models=[_model_info(entry) for entry in listing.models])


@router.get("/health", response_model=HealthResponse)
async def api_health(ollama_client=Depends(get_ollama_client)):
    connected = True
    try:
        await ollama_client.list()
    except Exception:
        connected = False

    return HealthResponse(
        status="healthy" if connected else "degraded",
        ollama_connected=connected,
    )


app.include_router(router)
