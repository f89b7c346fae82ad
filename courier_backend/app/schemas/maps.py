"""
Map lookup schemas.
"""

from pydantic import BaseModel, Field


class CoordinatePair(BaseModel):
    lat1: float = Field(..., ge=-90, le=90)
    lng1: float = Field(..., ge=-180, le=180)
    lat2: float = Field(..., ge=-90, le=90)
    lng2: float = Field(..., ge=-180, le=180)


class StraightLineDistance(BaseModel):
    distance_km: float
