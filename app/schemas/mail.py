from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MailJob(BaseModel):
    job_id: str
    key: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime
    available_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None


class MailMessage(BaseModel):
    sender: str = Field(serialization_alias="from")
    to: str
    subject: str
    text: str
    html: Optional[str] = None
