# mechanic_booking/schemas/user.py
from pydantic import BaseModel, Field
from typing import Optional


class MechanicResponse(BaseModel):
    id: int
    full_name: str = Field(alias="fullName")
    email: Optional[str] = None
    phone: Optional[str] = None

    class Config:
        from_attributes = True
        populate_by_name = True
