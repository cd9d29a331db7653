import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class LoginRead(BaseModel):
    token: str
    user_id: uuid.UUID
