"""Model management endpoints: listing, capabilities, titles, preload and pull"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chatstream.errors import BackendError, BackendUnavailableError, ErrorCode
from chatstream.routers.deps import get_backend
from chatstream.services.llm_service import (
    DEFAULT_KEEP_ALIVE,
    TITLE_MAX_LEN,
    TITLE_PROMPT,
    clean_title,
    pull_progress,
)

logger = logging.getLogger(__name__)

router = APIRouter()

THINK_LEVELS = ["low", "medium", "high"]


class CapabilityRequest(BaseModel):
    model: str


class Capabilities(BaseModel):
    completion: bool
    vision: bool
    tools: bool


class ThinkSupport(BaseModel):
    supported: bool
    levels: list[str] = []


class CapabilityResponse(BaseModel):
    model: str
    capabilities: Capabilities
    think: ThinkSupport


class ChatNameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str
    first_message: str = Field(alias="firstMessage")
    max_len: int | None = Field(default=None, ge=1, alias="maxLen")


class PreloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str = ""
    keep_alive: str = Field(default=DEFAULT_KEEP_ALIVE, alias="keepAlive")


class PullRequest(BaseModel):
    model: str = ""
    insecure: bool = False


def _error(status_code: int, message: str, code: ErrorCode) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code.value})


def _line(chunk: dict[str, Any]) -> str:
    return json.dumps(chunk, ensure_ascii=False) + "\n"


@router.get("/models")
async def list_models(backend=Depends(get_backend)):
    """List models installed on the backend"""
    try:
        models = await backend.list_models()
    except BackendUnavailableError as e:
        return _error(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except BackendError as e:
        return _error(502, str(e), ErrorCode.CHAT_ERROR)
    return {"models": models}


@router.post("/model-capabilities", response_model=CapabilityResponse)
async def model_capabilities(request: CapabilityRequest, backend=Depends(get_backend)):
    """Report what a model can do, from its declared capabilities"""
    try:
        declared = await backend.declared_capabilities(request.model)
    except BackendUnavailableError as e:
        return _error(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except BackendError as e:
        # An unknown model just reports no capabilities
        logger.info("[Models] capability lookup failed for %s: %s", request.model, e)
        declared = []

    thinks = "thinking" in declared
    return CapabilityResponse(
        model=request.model,
        capabilities=Capabilities(
            completion="completion" in declared or not declared,
            vision="vision" in declared,
            tools="tools" in declared,
        ),
        think=ThinkSupport(supported=thinks, levels=THINK_LEVELS if thinks else []),
    )


@router.post("/chat-name")
async def chat_name(request: ChatNameRequest, backend=Depends(get_backend)):
    """Ask the model for a short title summarizing a chat's first message"""
    prompt = TITLE_PROMPT.format(message=request.first_message)
    try:
        raw = await backend.chat_once(request.model, [{"role": "user", "content": prompt}])
    except BackendUnavailableError as e:
        return _error(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except BackendError as e:
        logger.warning("[Models] title generation with %s failed: %s", request.model, e)
        return _error(500, str(e), ErrorCode.CHAT_ERROR)
    return {"title": clean_title(raw, request.max_len or TITLE_MAX_LEN)}


@router.post("/preload")
async def preload_model(request: PreloadRequest, backend=Depends(get_backend)):
    """Warm a model into memory so the first chat turn starts quickly"""
    if not request.model:
        return JSONResponse(status_code=400, content={"error": "Model is required"})
    try:
        await backend.preload(request.model, request.keep_alive)
    except BackendUnavailableError as e:
        return _error(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except BackendError as e:
        return _error(503, f"Failed to preload model: {e}", ErrorCode.PRELOAD_ERROR)
    return {
        "success": True,
        "model": request.model,
        "keepAlive": request.keep_alive,
        "message": f"Model {request.model} preloaded and will stay in memory for {request.keep_alive}",
    }


async def _resume(first: Optional[dict[str, Any]], progress: AsyncIterator[dict[str, Any]]):
    if first is not None:
        yield first
    async for data in progress:
        yield data


async def _pull_lines(first: Optional[dict[str, Any]], progress: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    """Progress chunks with repeated percentages dropped, then ``done`` or ``error``"""
    last_percent = None
    try:
        async for data in _resume(first, progress):
            chunk = pull_progress(data)
            percent = chunk.get("percent")
            if percent is not None:
                if percent == last_percent:
                    continue
                last_percent = percent
            yield _line(chunk)
    except Exception as e:
        logger.error("[Models] pull failed: %s", e)
        yield _line({"kind": "error", "error": str(e) or type(e).__name__})
        return
    finally:
        await progress.aclose()
    yield _line({"kind": "done"})


@router.post("/pull")
async def pull_model(request: PullRequest, backend=Depends(get_backend)):
    """Pull a model from the registry, streaming progress as NDJSON"""
    if not request.model:
        return JSONResponse(status_code=400, content={"error": "Missing 'model'"})

    progress = backend.pull(request.model, insecure=request.insecure)
    # The first status line confirms the pull started
    try:
        first = await progress.__anext__()
    except StopAsyncIteration:
        first = None
    except BackendUnavailableError as e:
        return _error(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except BackendError as e:
        return _error(503, f"Failed to start pull: {e}", ErrorCode.PULL_ERROR)

    logger.info("[Models] pulling %s", request.model)
    return StreamingResponse(
        _pull_lines(first, progress),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
