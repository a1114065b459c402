"""Streaming chat endpoint"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chatstream.errors import BackendUnavailableError, ErrorCode
from chatstream.models.chat import ChatRequest, ErrorResponse
from chatstream.routers.deps import get_backend, get_config, get_store, get_tool_provider
from chatstream.services.transducer import DEFAULT_PERSIST_INTERVAL, StreamTransducer
from chatstream.services.tool_loop import DEFAULT_MAX_ROUNDS

logger = logging.getLogger(__name__)

router = APIRouter()

NDJSON_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _error_response(status_code: int, message: str, code: ErrorCode) -> JSONResponse:
    body = ErrorResponse(error=message, code=code.value)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.post("/chat")
async def chat_stream(
    request: ChatRequest,
    http_request: Request,
    config: dict = Depends(get_config),
    backend=Depends(get_backend),
    store=Depends(get_store),
    tool_provider=Depends(get_tool_provider),
):
    """Stream a chat turn as newline-delimited JSON chunks"""
    stream_cfg = config.get("stream", {})
    transducer = StreamTransducer(
        backend,
        store=store,
        tool_provider=tool_provider,
        persist_interval=stream_cfg.get("persistInterval", DEFAULT_PERSIST_INTERVAL),
        max_tool_rounds=stream_cfg.get("maxToolRounds", DEFAULT_MAX_ROUNDS),
    )

    try:
        tools = await transducer.preflight(request)
    except BackendUnavailableError as e:
        logger.warning("[Chat] backend unavailable: %s", e)
        return _error_response(503, str(e), ErrorCode.BACKEND_UNAVAILABLE)
    except Exception as e:
        logger.error("[Chat] preflight failed: %s", e)
        return _error_response(500, str(e) or "Chat request failed", ErrorCode.CHAT_ERROR)

    logger.info(
        "[Chat] model=%s messages=%d tools=%d chat=%s",
        request.model,
        len(request.messages),
        len(tools or []),
        request.chat_id,
    )
    return StreamingResponse(
        transducer.stream(request, tools, is_disconnected=http_request.is_disconnected),
        media_type="application/x-ndjson",
        headers=NDJSON_HEADERS,
    )
