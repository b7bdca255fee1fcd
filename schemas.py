"""
Database Schemas for the Vrbo booking backend

Each Pydantic model describes the documents of one MongoDB collection.
Field names are kept camelCase because that is how the records are stored
and how the web client sends them.

Collections:
- User -> "users"
- Booking -> "bookings"
- Property -> "propertyData"
- UserInfo -> "userInfo"
- YearlyEarning -> "yearlyEarnings"
"""
from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints

from validation import is_valid_email


def _email(value: str) -> str:
    if not is_valid_email(value):
        raise ValueError("Invalid email address")
    return value


# at least one non-blank character; stored exactly as sent
NonEmptyStr = Annotated[str, StringConstraints(min_length=1, pattern=r"\S")]
Email = Annotated[str, AfterValidator(_email)]


class User(BaseModel):
    uid: Optional[str] = Field(None, description="External auth (Firebase) identifier")
    name: NonEmptyStr
    email: Email = Field(..., description="Unique, stored as given")
    imageURL: Optional[str] = Field(None, description="Profile image URL")
    createdAt: datetime
    lastLogin: datetime
    isAdmin: bool = False
    age: Optional[int] = Field(None, ge=0)
    securityDeposit: Optional[float] = Field(None, ge=0)
    idNumber: Optional[str] = None


class Booking(BaseModel):
    """
    One booking per (email, resortId). Anything else the client sends is
    stored alongside the key.
    """
    model_config = ConfigDict(extra="allow")

    email: Email
    resortId: NonEmptyStr


class PropertyDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: NonEmptyStr
    country: NonEmptyStr
    address: NonEmptyStr
    city: NonEmptyStr
    state: NonEmptyStr
    zipCode: NonEmptyStr


class Property(BaseModel):
    model_config = ConfigDict(extra="allow")

    propertyType: NonEmptyStr
    location: NonEmptyStr
    details: PropertyDetails


class UserInfo(BaseModel):
    """Profile data kept next to the account, keyed by email."""
    model_config = ConfigDict(extra="allow")

    email: Email
    age: Optional[int] = Field(None, ge=0)
    securityDeposit: Optional[float] = Field(None, ge=0)
    idNumber: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class YearlyEarning(BaseModel):
    year: int = Field(..., ge=1, le=9999)
    amount: float
