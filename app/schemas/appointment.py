from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class AppointmentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider_id: StrictInt = Field(..., gt=0)
    date: datetime


class Appointment(BaseModel):
    id: int
    user_id: int
    provider_id: int
    date: datetime
    canceled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.canceled_at is None


class AvatarSummary(BaseModel):
    id: int
    path: str
    url: str


class ProviderSummary(BaseModel):
    id: int
    name: str
    avatar: Optional[AvatarSummary] = None


class AppointmentView(BaseModel):
    id: int
    date: datetime
    provider: Optional[ProviderSummary] = None
