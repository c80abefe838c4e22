"""
Database Schemas for CityGuardian

Each Pydantic model represents a MongoDB collection.
Collection name = lowercase of class name (User -> "user", Complaint -> "complaint").
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, StringConstraints, field_validator

Role = Literal['citizen', 'employee', 'admin']
Status = Literal['pending', 'in_progress', 'resolved']
Priority = Literal['low', 'medium', 'high', 'critical']
Category = Literal['air_pollution', 'pothole', 'streetlight', 'noise', 'waste', 'water', 'other']

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

ROLES = ('citizen', 'employee', 'admin')
STATUSES = ('pending', 'in_progress', 'resolved')


class MediaHandle(BaseModel):
    url: str = Field(..., min_length=1, description="Public URL of the stored image")
    media_id: str = Field(..., min_length=1, description="Identifier issued by the storage service")
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    byte_size: Optional[int] = None


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Lowercased, unique email address")
    password_hash: str = Field(..., description="bcrypt hash, never returned to clients")
    mobile: str = Field(..., description="Contact phone number")
    address: str = Field('', description="Street address")
    city: str = Field('', description="City")
    role: Role = Field('citizen', description="Role of the account")
    avatar: Optional[MediaHandle] = None
    complaints: List[str] = Field(default_factory=list, description="Ids of complaints authored")
    is_active: bool = Field(True, description="Whether user is active")


class Location(BaseModel):
    address: NonBlank = Field(..., description="Nearest address or landmark")
    coordinates: Tuple[float, float] = Field((0.0, 0.0), description="(longitude, latitude)")

    @field_validator('coordinates')
    @classmethod
    def check_range(cls, v):
        lon, lat = v
        if not -180 <= lon <= 180:
            raise ValueError("longitude must be between -180 and 180")
        if not -90 <= lat <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v


class Contact(BaseModel):
    mobile: NonBlank
    email: Optional[str] = None


class StatusChange(BaseModel):
    status: Status
    by: str = Field(..., description="User id of the employee/admin")
    at: datetime
    note: Optional[str] = None


class Complaint(BaseModel):
    title: str
    category: Category
    description: str
    location: Location
    priority: Priority = 'medium'
    contact: Contact
    images: List[MediaHandle] = Field(default_factory=list)
    status: Status = 'pending'
    author_id: str = Field(..., description="Id of the submitting user")
    history: List[StatusChange] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
