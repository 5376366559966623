from typing import Any, Dict, Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime: float
    message: str
    checks: Optional[Dict[str, Any]] = None
