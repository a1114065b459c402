"""Configuration API endpoints"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from chatstream.routers.deps import get_backend, get_config_manager

router = APIRouter()


class StreamSettings(BaseModel):
    """Streaming knobs; omitted fields keep their saved value"""

    model_config = ConfigDict(populate_by_name=True)

    persist_interval: float | None = Field(default=None, ge=0, alias="persistInterval")
    max_tool_rounds: int | None = Field(default=None, ge=1, alias="maxToolRounds")


class ConfigUpdateRequest(BaseModel):
    """Request to update configuration"""

    ollama: dict | None = None
    stream: StreamSettings | None = None
    logging: dict | None = None


class ConfigResponse(BaseModel):
    """Configuration response"""

    ollama: dict
    stream: dict
    server: dict
    logging: dict


class ValidateResponse(BaseModel):
    """Validation response"""

    valid: bool
    message: str
    host: str


@router.get("", response_model=ConfigResponse)
async def get_config(config_manager=Depends(get_config_manager)) -> ConfigResponse:
    """Get current configuration"""
    config = config_manager.get_config()
    return ConfigResponse(
        ollama=config.get("ollama", {}),
        stream=config.get("stream", {}),
        server=config.get("server", {}),
        logging=config.get("logging", {}),
    )


@router.put("")
async def update_config(request: ConfigUpdateRequest, config_manager=Depends(get_config_manager)) -> dict[str, Any]:
    """Update configuration"""
    update = request.model_dump(exclude_none=True, by_alias=True)

    try:
        config_manager.save_config(update)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"status": "success", "message": "Configuration updated"}


@router.post("/validate", response_model=ValidateResponse)
async def validate_config(backend=Depends(get_backend)) -> ValidateResponse:
    """Validate current configuration by pinging the backend"""
    if await backend.ping():
        return ValidateResponse(valid=True, message=f"Successfully connected to {backend.host}", host=backend.host)
    return ValidateResponse(valid=False, message=f"Cannot reach {backend.host}", host=backend.host)
