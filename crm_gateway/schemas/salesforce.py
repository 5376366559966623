from typing import Any, Dict
from pydantic import BaseModel, Field


class SalesforceCall(BaseModel):
    """Body of a proxied CRM call; the payload is forwarded untouched."""

    payload: Dict[str, Any] = Field(default_factory=dict)
    token: str = Field(..., min_length=1)
