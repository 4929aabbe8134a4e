"""Place record returned by the places provider."""
from typing import List, Optional

from pydantic import BaseModel, Field


class PlaceRecord(BaseModel):
    """Normalized place: at least place_id, name, lat, lng, address."""

    place_id: str
    name: str = ""
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    categories: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    phone: Optional[str] = None
    price_level: Optional[int] = None
    photo_urls: List[str] = Field(default_factory=list)
