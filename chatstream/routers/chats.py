"""Chat record endpoints"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException

from chatstream.errors import StoreError
from chatstream.models.message import (
    CreateChatRequest,
    PinChatRequest,
    RenameChatRequest,
    SetModelRequest,
)
from chatstream.routers.deps import get_store

router = APIRouter()


def _dump(chat) -> dict:
    return chat.model_dump(mode="json", by_alias=True)


@router.get("")
async def list_chats(store=Depends(get_store)):
    """List chats, pinned first, then by last activity"""
    chats = await store.list_chats()
    return {"chats": [_dump(c) for c in chats]}


@router.post("")
async def create_chat(request: CreateChatRequest, store=Depends(get_store)):
    chat_id = request.id or str(uuid.uuid4())
    chat = await store.upsert_chat(chat_id, title=request.title or "New Chat", model=request.model)
    return {"chat": _dump(chat)}


@router.put("/{chat_id}/title")
async def rename_chat(chat_id: str, request: RenameChatRequest, store=Depends(get_store)):
    try:
        chat = await store.rename_chat(chat_id, request.title)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"chat": _dump(chat)}


@router.put("/{chat_id}/pin")
async def pin_chat(chat_id: str, request: PinChatRequest, store=Depends(get_store)):
    try:
        chat = await store.pin_chat(chat_id, request.pinned)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"chat": _dump(chat)}


@router.put("/{chat_id}/model")
async def set_chat_model(chat_id: str, request: SetModelRequest, store=Depends(get_store)):
    """Remember the model last picked for this chat"""
    chat = await store.set_chat_model(chat_id, request.model)
    return {"chat": _dump(chat)}


@router.delete("/{chat_id}")
async def delete_chat(chat_id: str, store=Depends(get_store)):
    try:
        await store.delete_chat(chat_id)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}
