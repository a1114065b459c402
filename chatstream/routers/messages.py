"""Persisted message endpoints"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from chatstream.errors import StoreError
from chatstream.models.message import CreateMessageRequest, DeleteAfterRequest
from chatstream.routers.deps import get_store

router = APIRouter()


@router.get("/{chat_id}")
async def list_messages(chat_id: str, store=Depends(get_store)):
    """List a chat's messages in conversation order"""
    messages = await store.list_messages(chat_id)
    return {"messages": [m.model_dump(mode="json", by_alias=True) for m in messages]}


@router.post("")
async def create_message(request: CreateMessageRequest, store=Depends(get_store)):
    """Create a message, creating its chat on first use"""
    try:
        message = await store.create_message(
            request.chat_id, request.role, request.parts, message_id=request.id, index=request.index
        )
    except StoreError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": message.model_dump(mode="json", by_alias=True)}


@router.post("/delete-after")
async def delete_after_message(request: DeleteAfterRequest, store=Depends(get_store)):
    """Delete a message and everything after it"""
    deleted = await store.delete_after_message(request.chat_id, request.message_id)
    return {"deletedCount": deleted}


@router.delete("/{message_id}")
async def delete_message(message_id: str, store=Depends(get_store)):
    try:
        await store.delete_message(message_id)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}
