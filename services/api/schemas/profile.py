"""
Pydantic schemas for user profiles and statistics.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ProfileUpdate(BaseModel):
    display_name: str = Field(..., max_length=50)
    photo_url: Optional[str] = Field(None, max_length=2000)
    bio: Optional[str] = Field(None, max_length=500)

    @field_validator("display_name")
    @classmethod
    def display_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("display_name must not be blank")
        return v.strip()


class ProfileOut(BaseModel):
    uid: str
    display_name: str = ""
    photo_url: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None


class TagCountOut(BaseModel):
    tag: str
    count: int


class MonthCountOut(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    count: int


class StatsOut(BaseModel):
    total_count: int
    reflection_count: int
    current_month_count: int
    top_tags: List[TagCountOut]
    monthly_counts: List[MonthCountOut]
