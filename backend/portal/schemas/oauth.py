# portal/schemas/oauth.py
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class OAuthAccountOut(BaseModel):
    provider: str
    provider_account_id: str
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
