# src/presentation/api/schemas/pulse.py
from pydantic import BaseModel, Field
from typing import List

from core.domain.entities.TokenEntity import TokenEntity


class PulseTokensResponse(BaseModel):
    """Schema for the pulse token list"""
    tokens: List[TokenEntity] = Field([], description="Newest tokens first")
    count: int = Field(..., description="Tokens currently held, after expiry")
    ws_connected: bool = Field(..., alias="wsConnected", description="Whether the PumpPortal feed is live")

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    """Schema for the liveness probe"""
    status: str = "ok"
    ws_connected: bool = Field(..., alias="wsConnected")
    token_count: int = Field(..., alias="tokenCount")

    class Config:
        populate_by_name = True
