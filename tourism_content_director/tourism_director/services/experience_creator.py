"""
Experience creator: groups existing locations into themed experiences.

Local experiences use one city's locations; thematic ones span cities. The LLM proposes
groupings, each proposal is resolved against the candidate pool (ids first, then name
matching) and persisted with ordered location links. Accommodation locations are never
offered as candidates.
"""
from collections import Counter
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.config import get_settings
from tourism_director.exceptions import RequestError
from tourism_director.logging_config import get_logger
from tourism_director.models import Experience, ExperienceLocation, Location
from tourism_director.schemas.llm_outputs import experience_proposals_model, localized_dict
from tourism_director.services.catalog import ExperienceCategory
from tourism_director.services.request_queue import RequestQueue
from tourism_director.services.setting_store import read_setting

logger = get_logger(__name__)

MINUTES_PER_LOCATION = 35
MINUTES_BETWEEN_LOCATIONS = 15
LOCAL_PROPOSALS_PER_REQUEST = 5
THEMATIC_PROPOSALS_PER_REQUEST = 3
DEFAULT_MIN_LOCATIONS = 1

IJEKAVICA_RULES = (
    "For Bosnian (bs) use ijekavica: lijepo, vrijeme, mjesto, vidjeti, bijelo, stoljeća; "
    "never ekavica (lepo, vreme, mesto, videti, belo). Use historija, not istorija; hiljada, not tisuća."
)


def majority_city(cities: Iterable[Optional[str]]) -> Optional[str]:
    """Most frequent non-empty city; ties go to the first encountered."""
    counts = Counter(c for c in cities if c)
    if not counts:
        return None
    # Counter preserves insertion order, max() keeps the first of equal counts
    return max(counts, key=lambda c: counts[c])


def default_duration(location_count: int) -> int:
    """Minutes: 35 per location plus 15 between consecutive locations."""
    return location_count * MINUTES_PER_LOCATION + max(0, location_count - 1) * MINUTES_BETWEEN_LOCATIONS


class ExperienceCreator:
    """Creates local and thematic experiences from the location pool."""

    def __init__(
        self,
        db: AsyncSession,
        queue: Optional[RequestQueue] = None,
        locales: Optional[Sequence[str]] = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.queue = queue or RequestQueue(settings)
        self.locales = tuple(locales or settings.supported_locales)

    async def min_locations(self) -> int:
        value = await read_setting(self.db, "experience.min_locations", DEFAULT_MIN_LOCATIONS)
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            logger.warning("experience_creator.bad_min_locations", value=value)
            return DEFAULT_MIN_LOCATIONS

    async def create_local_experiences(self, city: str, max_experiences: Optional[int] = None) -> List[Experience]:
        """Experiences from one city's locations. max_experiences None = no cap."""
        if max_experiences is not None and max_experiences <= 0:
            return []
        candidates = await self._candidates(city)
        min_locations = await self.min_locations()
        if len(candidates) < min_locations:
            logger.info("experience_creator.not_enough_locations", city=city, available=len(candidates))
            return []

        wanted = self._wanted(max_experiences, LOCAL_PROPOSALS_PER_REQUEST)
        prompt = self._local_prompt(city, candidates, wanted)
        proposals = await self._propose(prompt, f"experience_creator:local:{city}")
        return await self._realize_all(proposals, candidates, min_locations, max_experiences, kind="local")

    async def create_thematic_experiences(self, max_experiences: Optional[int] = None) -> List[Experience]:
        """Cross-city experiences from every location."""
        if max_experiences is not None and max_experiences <= 0:
            return []
        candidates = await self._candidates(None)
        min_locations = await self.min_locations()
        if len(candidates) < min_locations:
            logger.info("experience_creator.not_enough_locations", city=None, available=len(candidates))
            return []

        wanted = self._wanted(max_experiences, THEMATIC_PROPOSALS_PER_REQUEST)
        prompt = self._thematic_prompt(candidates, wanted)
        proposals = await self._propose(prompt, "experience_creator:thematic")
        return await self._realize_all(proposals, candidates, min_locations, max_experiences, kind="thematic")

    async def realize_proposal(
        self,
        proposal: Any,
        candidates: Sequence[Location],
        min_locations: int,
        kind: str = "local",
    ) -> Optional[Experience]:
        """Persist one proposal, or None when it resolves to too few locations."""
        locations = self.resolve_locations(proposal, candidates, min_locations)
        if len(locations) < max(1, min_locations):
            logger.info(
                "experience_creator.proposal_rejected",
                resolved=len(locations),
                min_locations=min_locations,
            )
            return None

        titles = localized_dict(proposal.titles)
        descriptions = localized_dict(proposal.descriptions)
        title = titles.get("en") or next(iter(titles.values()), None) or "Experience"
        category = ExperienceCategory.lookup(proposal.category_key)
        duration = proposal.estimated_duration
        if not duration or duration <= 0:
            duration = default_duration(len(locations))

        experience = Experience(
            title=title[:255],
            city=majority_city(loc.city for loc in locations),
            category_key=category.value if category else None,
            estimated_duration=duration,
            seasons=[s for s in proposal.seasons if s],
            titles=titles,
            descriptions=descriptions,
            theme_reasoning=proposal.theme_reasoning or None,
            kind=kind,
            ai_generated=True,
        )
        self.db.add(experience)
        await self.db.flush()

        for position, location in enumerate(locations, start=1):
            self.db.add(ExperienceLocation(experience_id=experience.id, location_id=location.id, position=position))
        self._attach_cover_photo(experience, locations)
        await self.db.flush()

        logger.info(
            "experience_creator.created",
            experience_id=experience.id,
            title=experience.title,
            locations=len(locations),
            kind=kind,
        )
        return experience

    @staticmethod
    def resolve_locations(proposal: Any, candidates: Sequence[Location], min_locations: int) -> List[Location]:
        """Proposal ids inside the pool; name substring matching when ids fall short."""
        by_id = {loc.id: loc for loc in candidates}
        locations = list(dict.fromkeys(by_id[i] for i in proposal.location_ids if i in by_id))
        if len(locations) >= max(1, min_locations) or not proposal.location_names:
            return locations

        matched: List[Location] = []
        for name in proposal.location_names:
            needle = (name or "").strip().lower()
            if not needle:
                continue
            found = next((loc for loc in candidates if needle in loc.name.lower()), None)
            if found is not None and found not in matched:
                matched.append(found)
        return matched

    async def _candidates(self, city: Optional[str]) -> List[Location]:
        q = select(Location).where(Location.location_type != "accommodation")
        if city is not None:
            q = q.where(Location.city == city)
        r = await self.db.execute(q.order_by(Location.city, Location.id))
        return list(r.scalars().all())

    async def _realize_all(
        self,
        proposals: List[Any],
        candidates: Sequence[Location],
        min_locations: int,
        max_experiences: Optional[int],
        kind: str,
    ) -> List[Experience]:
        created: List[Experience] = []
        for proposal in proposals:
            if max_experiences is not None and len(created) >= max_experiences:
                logger.info("experience_creator.limit_reached", max_experiences=max_experiences)
                break
            experience = await self.realize_proposal(proposal, candidates, min_locations, kind=kind)
            if experience is not None:
                created.append(experience)
        logger.info("experience_creator.batch_done", kind=kind, created=len(created), proposed=len(proposals))
        return created

    async def _propose(self, prompt: str, context: str) -> List[Any]:
        try:
            result = await self.queue.request(prompt, schema=experience_proposals_model(self.locales), context=context)
        except RequestError as e:
            logger.warning("experience_creator.proposal_failed", context=context, error=str(e))
            return []
        return list(result.experiences)

    @staticmethod
    def _wanted(max_experiences: Optional[int], per_request: int) -> int:
        if max_experiences is None:
            return per_request
        return min(max_experiences, per_request)

    @staticmethod
    def _attach_cover_photo(experience: Experience, locations: Sequence[Location]) -> None:
        """First location photo becomes the cover; experiences without one stay uncovered."""
        source = next((loc for loc in locations if loc.photo_urls), None)
        if source is None:
            logger.debug("experience_creator.no_cover_photo", experience_id=experience.id)
            return
        experience.cover_photo_url = source.photo_urls[0]

    def _format_location(self, location: Location) -> str:
        lines = [
            f"ID: {location.id} | {location.name}",
            f"  City: {location.city}",
            f"  Type: {', '.join(location.categories) or location.location_type}",
            f"  Coords: {location.lat}, {location.lng}",
        ]
        description = (location.descriptions or {}).get("en")
        if description:
            lines.append(f"  Description: {description[:150]}")
        if location.tags:
            lines.append(f"  Tags: {', '.join(location.tags)}")
        return "\n".join(lines)

    def _category_list(self) -> str:
        return ", ".join(c.value for c in ExperienceCategory)

    def _local_prompt(self, city: str, candidates: Sequence[Location], wanted: int) -> str:
        listing = "\n\n".join(self._format_location(loc) for loc in candidates)
        return (
            f"Create {wanted} curated tourism experiences for {city}.\n\n"
            f"AVAILABLE LOCATIONS IN {city.upper()}:\n{listing}\n\n"
            "Group locations thematically (history, food, nature, culture...), 3-5 locations each, "
            "in a sensible walking order. A location may appear in several experiences. "
            "Avoid generic titles like 'City Tour'.\n"
            f"category_key must be one of: {self._category_list()}.\n"
            f"Write titles and 100-200 word descriptions for locales: {', '.join(self.locales)}.\n"
            f"{IJEKAVICA_RULES}"
        )

    def _thematic_prompt(self, candidates: Sequence[Location], wanted: int) -> str:
        sections = []
        for city in dict.fromkeys(loc.city for loc in candidates):
            city_locations = [loc for loc in candidates if loc.city == city]
            sections.append(f"=== {city} ===\n" + "\n".join(self._format_location(loc) for loc in city_locations))
        listing = "\n\n".join(sections)
        return (
            f"Create {wanted} CROSS-CITY thematic experiences connecting locations from DIFFERENT cities.\n\n"
            f"AVAILABLE LOCATIONS BY CITY:\n{listing}\n\n"
            "Each experience must use locations from at least 2 cities (4-6 locations) "
            "united by a compelling theme such as fortresses, bridges or rivers.\n"
            f"category_key must be one of: {self._category_list()}.\n"
            f"Write titles and 100-200 word descriptions for locales: {', '.join(self.locales)}.\n"
            f"{IJEKAVICA_RULES}"
        )
