"""
Student record models.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class StudentBase(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    class_name: str = Field(min_length=1, max_length=20)
    section: Optional[str] = Field(default=None, max_length=10)
    roll_number: Optional[int] = Field(default=None, ge=1)
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    status: str = "active"


class StudentCreate(StudentBase):
    pass


class StudentUpdate(BaseModel):
    """Partial update; unset fields keep their value."""

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    class_name: Optional[str] = Field(default=None, min_length=1, max_length=20)
    section: Optional[str] = Field(default=None, max_length=10)
    roll_number: Optional[int] = Field(default=None, ge=1)
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    status: Optional[str] = None


class Student(StudentBase):
    id: int
