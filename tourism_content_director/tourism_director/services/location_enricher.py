"""
Location enricher: raw place record -> persisted Location with AI-written content.

Invalid places (no name / coordinates) return None. Existing locations (same place_id,
same coordinates, or same name in the city) are returned instead of duplicated. AI
failures leave the location minimally filled; each description/history batch is
independent so one failed locale batch does not lose the others.
"""
import re
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.config import get_settings
from tourism_director.exceptions import RequestError
from tourism_director.logging_config import get_logger
from tourism_director.models import Location
from tourism_director.schemas.llm_outputs import LocationMetadata, localized_dict, localized_payload_model
from tourism_director.schemas.places import PlaceRecord
from tourism_director.services.request_queue import RequestQueue

logger = get_logger(__name__)

LOCALES_PER_DESCRIPTION_BATCH = 5
LOCALES_PER_HISTORY_BATCH = 3
COORDINATE_TOLERANCE = 0.0001

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

LOCATION_TYPE_RULES = (
    ("restaurant", re.compile(r"restaurant|cafe|bar|food|catering")),
    ("accommodation", re.compile(r"hotel|accommodation|lodging|hostel")),
    ("guide", re.compile(r"guide|tour")),
    ("business", re.compile(r"shop|store|business|commercial")),
    ("artisan", re.compile(r"craft|artisan")),
)


def sanitize_external_string(value: Optional[str]) -> Optional[str]:
    """Drop NUL and control characters (tab/newline/CR kept) that PostgreSQL text rejects."""
    if value is None:
        return None
    return CONTROL_CHARS.sub("", value)


def determine_location_type(categories: Sequence[str]) -> str:
    joined = " ".join(categories or [])
    if not joined:
        return "place"
    for location_type, pattern in LOCATION_TYPE_RULES:
        if pattern.search(joined):
            return location_type
    return "place"


def determine_budget(price_level: Optional[int]) -> str:
    if price_level in (1, 2):
        return "low"
    if price_level == 3:
        return "medium"
    if price_level == 4:
        return "high"
    return "medium"


def normalize_website(url: Optional[str]) -> Optional[str]:
    url = sanitize_external_string((url or "").strip())
    if not url:
        return None
    if re.match(r"^https?://", url, re.IGNORECASE):
        return url
    return f"https://{url}"


def tags_from_categories(categories: Sequence[str]) -> List[str]:
    """Last category segment, underscores to dashes, first 3 distinct."""
    tags: List[str] = []
    for category in categories or []:
        tag = str(category).split(".")[-1].replace("_", "-")
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:3]


def _chunks(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class LocationEnricher:
    """Creates Location rows from places and fills them via the request queue."""

    def __init__(
        self,
        db: AsyncSession,
        queue: Optional[RequestQueue] = None,
        locales: Optional[Sequence[str]] = None,
        target_country: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.queue = queue or RequestQueue(settings)
        self.locales = list(locales or settings.supported_locales)
        self.target_country = target_country or settings.ai_target_country

    async def create_and_enrich(self, place: PlaceRecord, city: str) -> Optional[Location]:
        """Location for place (new or existing), or None when the place is unusable."""
        name = (sanitize_external_string(place.name) or "").strip()
        if not name or place.lat is None or place.lng is None:
            logger.debug("enricher.invalid_place", place_id=place.place_id)
            return None

        existing = await self.find_existing(place, name, city)
        if existing is not None:
            logger.info("enricher.location_exists", location_id=existing.id, name=existing.name, city=city)
            return existing

        location = Location(
            place_id=place.place_id,
            name=name[:255],
            city=city,
            address=sanitize_external_string(place.address),
            lat=place.lat,
            lng=place.lng,
            location_type=determine_location_type(place.categories),
            budget=determine_budget(place.price_level),
            website=normalize_website(place.website),
            phone=sanitize_external_string(place.phone),
            categories=list(place.categories),
            tags=tags_from_categories(place.categories),
            photo_urls=list(place.photo_urls),
            descriptions={},
            historical_context={},
            enrichment={},
            ai_generated=True,
        )
        self.db.add(location)
        await self.db.flush()

        await self.enrich(location)
        await self.db.flush()
        logger.info("enricher.location_created", location_id=location.id, name=location.name, city=city)
        return location

    async def find_existing(self, place: PlaceRecord, name: str, city: str) -> Optional[Location]:
        conditions = [
            and_(
                Location.lat.between(place.lat - COORDINATE_TOLERANCE, place.lat + COORDINATE_TOLERANCE),
                Location.lng.between(place.lng - COORDINATE_TOLERANCE, place.lng + COORDINATE_TOLERANCE),
            ),
            and_(Location.city == city, func.lower(Location.name) == name.lower()),
        ]
        if place.place_id:
            conditions.append(Location.place_id == place.place_id)
        r = await self.db.execute(select(Location).where(or_(*conditions)).limit(1))
        return r.scalar_one_or_none()

    async def enrich(self, location: Location) -> bool:
        """Fill metadata, descriptions and historical context. True if anything was written."""
        enriched = False
        context = f"location_enricher:{location.id}"

        try:
            metadata = await self.queue.request(
                self._metadata_prompt(location),
                schema=LocationMetadata,
                context=f"{context}:metadata",
            )
            location.enrichment = {
                "suitable_experiences": metadata.suitable_experiences,
                "practical_info": metadata.practical_info.model_dump(),
            }
            location.tags = list(dict.fromkeys(location.tags + [t for t in metadata.tags if t]))
            enriched = True
        except RequestError as e:
            logger.warning("enricher.metadata_failed", location_id=location.id, error=str(e))

        descriptions = dict(location.descriptions or {})
        for batch in _chunks(self.locales, LOCALES_PER_DESCRIPTION_BATCH):
            try:
                result = await self.queue.request(
                    self._descriptions_prompt(location, batch),
                    schema=localized_payload_model("descriptions", tuple(batch)),
                    context=f"{context}:descriptions",
                )
                descriptions.update(localized_dict(result.descriptions))
            except RequestError as e:
                logger.warning("enricher.descriptions_failed", location_id=location.id, locales=batch, error=str(e))
        if descriptions:
            location.descriptions = descriptions
            enriched = True

        history = dict(location.historical_context or {})
        for batch in _chunks(self.locales, LOCALES_PER_HISTORY_BATCH):
            try:
                result = await self.queue.request(
                    self._history_prompt(location, batch),
                    schema=localized_payload_model("historical_context", tuple(batch)),
                    context=f"{context}:history",
                )
                history.update(localized_dict(result.historical_context))
            except RequestError as e:
                logger.warning("enricher.history_failed", location_id=location.id, locales=batch, error=str(e))
        if history:
            location.historical_context = history
            enriched = True

        return enriched

    def _info_block(self, location: Location) -> str:
        return (
            f"Name: {location.name}\n"
            f"City: {location.city}, {self.target_country}\n"
            f"Address: {location.address or 'unknown'}\n"
            f"Categories: {', '.join(location.categories) or 'none'}\n"
            f"Type: {location.location_type}"
        )

    def _metadata_prompt(self, location: Location) -> str:
        return (
            f"{self._info_block(location)}\n\n"
            "Describe how visitors use this place. Return suitable experience types "
            "(e.g. cultural, culinary, nature), up to 5 short tags, and practical info: "
            "best time to visit, typical visit duration in minutes, and 2-4 practical tips."
        )

    def _descriptions_prompt(self, location: Location, locales: Sequence[str]) -> str:
        return (
            f"{self._info_block(location)}\n\n"
            f"Write an engaging tourist description (about 150 words) for each locale: {', '.join(locales)}. "
            "Bosnian, Croatian and Serbian texts must use ijekavica. "
            "Only state facts you are confident about."
        )

    def _history_prompt(self, location: Location, locales: Sequence[str]) -> str:
        return (
            f"{self._info_block(location)}\n\n"
            f"Write the historical and cultural background (about 300 words) for each locale: {', '.join(locales)}. "
            "Bosnian, Croatian and Serbian texts must use ijekavica. "
            "If little is known, describe the wider area's history instead of inventing details."
        )
