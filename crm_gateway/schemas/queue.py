from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class BackoffOptions(BaseModel):
    type: str = Field(default="exponential", pattern=r"^(fixed|exponential)$")
    delay: int = Field(default=1000, ge=0, description="Base delay in milliseconds")


class JobOptions(BaseModel):
    """Per-job enqueue options; attempts and backoff default from the queue policy."""

    priority: int = 0
    delay: int = Field(default=0, ge=0, description="Milliseconds before the job becomes available")
    attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[BackoffOptions] = None
    job_id: Optional[str] = None


class JobHandle(BaseModel):
    id: str
    queue: str
    name: str
    data: Dict[str, Any]
    opts: Dict[str, Any]
    timestamp: int
