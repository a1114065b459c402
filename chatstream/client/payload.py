"""Message conversion and request payload helpers for the chat client"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from chatstream.models.chat import ReasoningLevel
from chatstream.models.message import ImagePart, StoredMessage, TextPart, UIMessage

logger = logging.getLogger(__name__)


def create_user_message(text: str, images: Optional[list[dict[str, str]]] = None) -> UIMessage:
    """Build a user message; ``images`` entries carry data, mimeType and fileName"""
    parts: list[Any] = [TextPart(text=text)]
    for image in images or []:
        parts.append(ImagePart(data=image["data"], mime_type=image["mimeType"], file_name=image.get("fileName")))
    return UIMessage(id=str(uuid.uuid4()), role="user", parts=parts)


def convert_db_to_ui_messages(records: list[StoredMessage]) -> list[UIMessage]:
    return [UIMessage(id=r.id, role=r.role, parts=list(r.parts)) for r in records]


def convert_ui_to_api_messages(messages: list[UIMessage]) -> list[dict[str, Any]]:
    """Flatten display messages into the ``{role, content, images?}`` form the backend takes"""
    converted = []
    for m in messages:
        content = " ".join(p.text for p in m.parts if p.type == "text")

        files = [p for p in m.parts if p.type == "file"]
        if m.role == "user" and files:
            attached = "\n".join(f"### {f.file_name}\n\n{f.content or f.data}\n" for f in files)
            content += f"\n\n## Attached Files\n\n{attached}"

        message: dict[str, Any] = {"role": m.role, "content": content}
        images = [p.data for p in m.parts if p.type == "image"]
        if m.role == "user" and images:
            message["images"] = images
        converted.append(message)
    return converted


def extract_images(message: UIMessage) -> Optional[list[dict[str, str]]]:
    images = [
        {"data": p.data, "mimeType": p.mime_type, "fileName": p.file_name or "image"}
        for p in message.parts
        if p.type == "image"
    ]
    return images or None


def first_text(message: UIMessage) -> Optional[str]:
    for part in message.parts:
        if part.type == "text":
            return part.text
    return None


def message_already_exists(messages: list[UIMessage], text: str) -> bool:
    """True when some user message already opens with exactly ``text``"""
    return any(m.role == "user" and first_text(m) == text for m in messages)


def prepare_payload(
    model: str,
    history: list[UIMessage],
    chat_id: str,
    assistant_message_id: str,
    text: str = "",
    system_prompt: Optional[str] = None,
    reasoning_level: Optional[ReasoningLevel] = None,
    images: Optional[list[dict[str, str]]] = None,
    user_message_id: Optional[str] = None,
    enable_tools: bool = True,
) -> dict[str, Any]:
    """Build the JSON body for the streaming chat endpoint"""
    messages = convert_ui_to_api_messages(history)
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})

    # Edits and retries resubmit with the user text already in history
    if text and not any(m["role"] == "user" and m["content"] == text for m in messages):
        message: dict[str, Any] = {"role": "user", "content": text}
        if images:
            message["images"] = [image["data"] for image in images]
        messages.append(message)

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "think": reasoning_level or False,
        "chatId": chat_id,
        "assistantMessageId": assistant_message_id,
        "enableTools": enable_tools,
    }
    if reasoning_level:
        payload["reasoningLevel"] = reasoning_level
    if user_message_id:
        payload["userMessageId"] = user_message_id
    return payload


def log_payload(payload: dict[str, Any], context: str) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    summary = [
        {
            "role": m["role"],
            "content": m["content"][:100] + ("..." if len(m["content"]) > 100 else ""),
            "imageCount": len(m.get("images") or []),
        }
        for m in payload["messages"]
    ]
    logger.debug("[chat] %s payload: model=%s messages=%s", context, payload["model"], summary)
