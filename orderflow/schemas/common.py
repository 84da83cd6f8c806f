"""
OrderFlow — Response envelope shared by every JSON endpoint
"""
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class UserRole(str, Enum):
    CLIENT = "client"
    RESTAURANT_ADMIN = "restaurant_admin"
    DELIVERY_PARTNER = "delivery_partner"
    PLATFORM_ADMIN = "platform_admin"


class CurrentUser(BaseModel):
    """Identity taken from the verified JWT claims."""
    id: str
    role: UserRole


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T | None = None


def ok(data=None, message: str | None = None) -> dict:
    return {"success": True, "message": message, "data": data}


def fail(message: str, data=None) -> dict:
    return {"success": False, "message": message, "data": data}
