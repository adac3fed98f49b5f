# mechanic_booking/schemas/service.py

from pydantic import BaseModel, Field
from typing import Optional


# What API returns
class ServiceResponse(BaseModel):
    id: int

    name: str
    description: Optional[str] = None
    price: float
    estimated_minutes: int = Field(alias="estimatedMinutes")
    is_active: bool = Field(alias="isActive")

    class Config:
        from_attributes = True
        populate_by_name = True
