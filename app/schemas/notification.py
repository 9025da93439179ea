from datetime import datetime

from pydantic import BaseModel


class Notification(BaseModel):
    id: str
    recipient_id: int
    content: str
    read: bool = False
    created_at: datetime
