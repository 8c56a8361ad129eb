# src/core/domain/entities/TokenEntity.py
from pydantic import BaseModel, Field
from typing import Optional


class TokenEntity(BaseModel):
    """A newly created token as kept in the recency store.

    Field aliases are the camelCase names the mobile app reads.
    """
    address: str
    symbol: str = "UNKNOWN"
    name: str = "Unknown Token"
    logo: Optional[str] = None
    price: float = 0.0
    market_cap: float = Field(0.0, alias="marketCap")
    bonding_progress: Optional[float] = Field(None, alias="bondingProgress")
    created_at: str = Field(..., alias="createdAt", description="ISO-8601 creation time")
    fetched_at: int = Field(..., alias="fetchedAt", description="Epoch ms when the token entered the store")

    class Config:
        populate_by_name = True
