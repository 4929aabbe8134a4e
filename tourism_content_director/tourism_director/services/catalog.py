"""
Closed lookup tables: tourist profiles and experience categories.

Both are enums with a frozen payload; validate_catalog() checks at startup that every
member has exactly one payload entry.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from tourism_director.exceptions import UnknownProfileError
from tourism_director.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProfileTraits:
    description: str
    pace: str
    activities: Tuple[str, ...]
    budget: str


class TouristProfile(str, Enum):
    FAMILY = "family"
    COUPLE = "couple"
    ADVENTURE = "adventure"
    CULTURE = "culture"
    BUDGET = "budget"
    LUXURY = "luxury"
    FOODIE = "foodie"
    SOLO = "solo"

    @property
    def traits(self) -> ProfileTraits:
        return PROFILE_TRAITS[self]

    @classmethod
    def parse(cls, key: str) -> "TouristProfile":
        """Profile for key (case-insensitive). Raises UnknownProfileError."""
        try:
            return cls((key or "").strip().lower())
        except ValueError:
            raise UnknownProfileError(key) from None


PROFILE_TRAITS: Dict[TouristProfile, ProfileTraits] = {
    TouristProfile.FAMILY: ProfileTraits(
        description="Families with children looking for safe, educational and fun activities",
        pace="relaxed",
        activities=("parks", "museums", "nature", "easy_walks", "family_restaurants"),
        budget="medium",
    ),
    TouristProfile.COUPLE: ProfileTraits(
        description="Couples seeking romantic spots, scenic views and fine dining",
        pace="relaxed",
        activities=("viewpoints", "restaurants", "old_town", "wine", "sunset_spots"),
        budget="medium",
    ),
    TouristProfile.ADVENTURE: ProfileTraits(
        description="Active travellers after hiking, rafting and outdoor challenges",
        pace="intense",
        activities=("hiking", "rafting", "climbing", "caves", "mountains"),
        budget="medium",
    ),
    TouristProfile.CULTURE: ProfileTraits(
        description="History and heritage lovers: museums, monuments, religious sites",
        pace="moderate",
        activities=("museums", "monuments", "religious_sites", "architecture", "history"),
        budget="medium",
    ),
    TouristProfile.BUDGET: ProfileTraits(
        description="Budget travellers who favour free sights and cheap local food",
        pace="moderate",
        activities=("free_attractions", "street_food", "walking_tours", "markets"),
        budget="low",
    ),
    TouristProfile.LUXURY: ProfileTraits(
        description="Travellers expecting premium dining, spas and exclusive experiences",
        pace="relaxed",
        activities=("fine_dining", "spa", "private_tours", "wine_tasting"),
        budget="high",
    ),
    TouristProfile.FOODIE: ProfileTraits(
        description="Food lovers exploring traditional cuisine, markets and cafes",
        pace="moderate",
        activities=("restaurants", "cafes", "markets", "cooking", "traditional_food"),
        budget="medium",
    ),
    TouristProfile.SOLO: ProfileTraits(
        description="Solo travellers wanting flexible, social and safe experiences",
        pace="moderate",
        activities=("walking_tours", "cafes", "museums", "nightlife", "viewpoints"),
        budget="low",
    ),
}


class ExperienceCategory(str, Enum):
    CULTURAL_HERITAGE = "cultural_heritage"
    HISTORY = "history"
    RELIGIOUS_HERITAGE = "religious_heritage"
    NATURE = "nature"
    ADVENTURE = "adventure"
    FOOD_AND_DRINK = "food_and_drink"
    ART_AND_MUSEUMS = "art_and_museums"
    ARCHITECTURE = "architecture"
    RELAXATION = "relaxation"
    NIGHTLIFE = "nightlife"
    FAMILY_FUN = "family_fun"
    LOCAL_CRAFTS = "local_crafts"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]

    @classmethod
    def lookup(cls, key: Optional[str]) -> Optional["ExperienceCategory"]:
        """Category for key or None (logged) when the key is unknown."""
        if not key:
            return None
        try:
            return cls(key.strip().lower())
        except ValueError:
            logger.warning("catalog.unknown_category", key=key)
            return None


CATEGORY_LABELS: Dict[ExperienceCategory, str] = {
    ExperienceCategory.CULTURAL_HERITAGE: "Cultural heritage",
    ExperienceCategory.HISTORY: "History",
    ExperienceCategory.RELIGIOUS_HERITAGE: "Religious heritage",
    ExperienceCategory.NATURE: "Nature",
    ExperienceCategory.ADVENTURE: "Adventure",
    ExperienceCategory.FOOD_AND_DRINK: "Food & drink",
    ExperienceCategory.ART_AND_MUSEUMS: "Art & museums",
    ExperienceCategory.ARCHITECTURE: "Architecture",
    ExperienceCategory.RELAXATION: "Relaxation",
    ExperienceCategory.NIGHTLIFE: "Nightlife",
    ExperienceCategory.FAMILY_FUN: "Family fun",
    ExperienceCategory.LOCAL_CRAFTS: "Local crafts",
}


def validate_catalog() -> None:
    """Raise RuntimeError if a profile or category has no payload (or a stray one)."""
    if set(PROFILE_TRAITS) != set(TouristProfile):
        raise RuntimeError("tourist profile table out of sync with TouristProfile")
    if set(CATEGORY_LABELS) != set(ExperienceCategory):
        raise RuntimeError("category label table out of sync with ExperienceCategory")


validate_catalog()
