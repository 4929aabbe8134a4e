"""
Plan creator: multi-day itineraries for a tourist profile from existing experiences.

Experiences are reused across plans. Ids proposed by the LLM are filtered against the
available pool; unknown ids are dropped and a repeated (experience, day) pair is ignored.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.config import get_settings
from tourism_director.exceptions import RequestError, UnknownProfileError
from tourism_director.logging_config import get_logger
from tourism_director.models import Experience, ExperienceLocation, Location, Plan, PlanExperience
from tourism_director.schemas.llm_outputs import localized_dict, plan_proposal_model
from tourism_director.services.catalog import TouristProfile
from tourism_director.services.experience_creator import majority_city
from tourism_director.services.request_queue import RequestQueue
from tourism_director.services.setting_store import read_setting

logger = get_logger(__name__)

DEFAULT_MIN_EXPERIENCES = 2

DEFAULT_TITLES: Dict[str, Dict[TouristProfile, str]] = {
    "en": {
        TouristProfile.FAMILY: "Family Adventure",
        TouristProfile.COUPLE: "Romantic Getaway",
        TouristProfile.ADVENTURE: "Adventure Experience",
        TouristProfile.CULTURE: "Cultural Discovery",
        TouristProfile.BUDGET: "Budget Explorer",
        TouristProfile.LUXURY: "Luxury Escape",
        TouristProfile.FOODIE: "Culinary Journey",
        TouristProfile.SOLO: "Solo Discovery",
    },
    "bs": {
        TouristProfile.FAMILY: "Porodična avantura",
        TouristProfile.COUPLE: "Romantični bijeg",
        TouristProfile.ADVENTURE: "Avanturističko iskustvo",
        TouristProfile.CULTURE: "Kulturno otkriće",
        TouristProfile.BUDGET: "Budget putovanje",
        TouristProfile.LUXURY: "Luksuzni odmor",
        TouristProfile.FOODIE: "Kulinarska tura",
        TouristProfile.SOLO: "Solo istraživanje",
    },
}


def default_title(profile: TouristProfile, city: Optional[str], locale: str) -> str:
    """'<profile name> - <city>' or '<profile name> BiH' for multi-city plans."""
    name = DEFAULT_TITLES.get(locale, {}).get(profile) or DEFAULT_TITLES["en"][profile]
    return f"{name} - {city}" if city else f"{name} BiH"


def suggested_duration(experience_count: int, multi_city: bool) -> int:
    if multi_city:
        return min(5, max(2, experience_count // 3))
    return min(3, max(1, experience_count // 3))


class PlanCreator:
    """Creates plans per tourist profile."""

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
        self.locales = tuple(locales or settings.supported_locales)
        self.target_country = target_country or settings.ai_target_country

    async def min_experiences(self) -> int:
        value = await read_setting(self.db, "plan.min_experiences", DEFAULT_MIN_EXPERIENCES)
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            logger.warning("plan_creator.bad_min_experiences", value=value)
            return DEFAULT_MIN_EXPERIENCES

    async def create_for_profile(
        self,
        profile: str,
        city: Optional[str] = None,
        duration_days: Optional[int] = None,
    ) -> Optional[Plan]:
        """Plan for profile in city (None = multi-city). None when skipped or the LLM fails."""
        try:
            tourist_profile = TouristProfile.parse(profile)
        except UnknownProfileError as e:
            logger.warning("plan_creator.unknown_profile", profile=e.key)
            return None

        experiences = await self.available_experiences(city)
        min_experiences = await self.min_experiences()
        if len(experiences) < min_experiences:
            logger.info(
                "plan_creator.not_enough_experiences",
                profile=tourist_profile.value,
                city=city,
                available=len(experiences),
            )
            return None

        cities_by_experience = await self.experience_cities([e.id for e in experiences])
        prompt = self._prompt(tourist_profile, city, duration_days, experiences, cities_by_experience)
        try:
            proposal = await self.queue.request(
                prompt,
                schema=plan_proposal_model(self.locales),
                context=f"plan_creator:{tourist_profile.value}:{city or 'multi-city'}",
            )
        except RequestError as e:
            logger.warning("plan_creator.proposal_failed", profile=tourist_profile.value, city=city, error=str(e))
            return None

        return await self._create_from_proposal(proposal, experiences, cities_by_experience, tourist_profile, city)

    async def create_for_all_profiles(
        self,
        city: Optional[str] = None,
        profiles: Optional[Sequence[str]] = None,
    ) -> List[Plan]:
        created: List[Plan] = []
        for profile in profiles or [p.value for p in TouristProfile]:
            plan = await self.create_for_profile(profile, city=city)
            if plan is not None:
                created.append(plan)
        logger.info("plan_creator.all_profiles_done", city=city or "multi-city", created=len(created))
        return created

    async def add_experience_to_plan(
        self,
        plan: Plan,
        experience: Experience,
        day_number: int,
        position: Optional[int] = None,
    ) -> Optional[PlanExperience]:
        """Append experience to a day. None when the (experience, day) pair already exists."""
        r = await self.db.execute(
            select(PlanExperience.id).where(
                PlanExperience.plan_id == plan.id,
                PlanExperience.experience_id == experience.id,
                PlanExperience.day_number == day_number,
            )
        )
        if r.scalar_one_or_none() is not None:
            return None
        if position is None:
            r = await self.db.execute(
                select(func.max(PlanExperience.position)).where(
                    PlanExperience.plan_id == plan.id,
                    PlanExperience.day_number == day_number,
                )
            )
            position = (r.scalar_one_or_none() or 0) + 1
        entry = PlanExperience(plan_id=plan.id, experience_id=experience.id, day_number=day_number, position=position)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def available_experiences(self, city: Optional[str]) -> List[Experience]:
        """Experiences with at least one location in city; every experience when city is None."""
        q = select(Experience)
        if city:
            in_city = (
                select(ExperienceLocation.experience_id)
                .join(Location, Location.id == ExperienceLocation.location_id)
                .where(Location.city == city)
            )
            q = q.where(Experience.id.in_(in_city))
        r = await self.db.execute(q.order_by(Experience.id))
        return list(r.scalars().all())

    async def experience_cities(self, experience_ids: Sequence[int]) -> Dict[int, List[str]]:
        """experience id -> cities of its locations in position order."""
        if not experience_ids:
            return {}
        r = await self.db.execute(
            select(ExperienceLocation.experience_id, Location.city)
            .join(Location, Location.id == ExperienceLocation.location_id)
            .where(ExperienceLocation.experience_id.in_(list(experience_ids)))
            .order_by(ExperienceLocation.experience_id, ExperienceLocation.position)
        )
        cities: Dict[int, List[str]] = {}
        for experience_id, city in r.all():
            cities.setdefault(experience_id, []).append(city)
        return cities

    @staticmethod
    def determine_primary_city(experience_ids: Sequence[int], cities_by_experience: Dict[int, List[str]]) -> Optional[str]:
        """Majority city over the locations of the plan's experiences."""
        return majority_city(city for eid in experience_ids for city in cities_by_experience.get(eid, []))

    async def _create_from_proposal(
        self,
        proposal: Any,
        experiences: Sequence[Experience],
        cities_by_experience: Dict[int, List[str]],
        profile: TouristProfile,
        city: Optional[str],
    ) -> Optional[Plan]:
        pool = {e.id for e in experiences}
        entries: List[tuple] = []
        seen = set()
        for day in proposal.days:
            day_number = day.day_number if day.day_number and day.day_number > 0 else 1
            position = 0
            for experience_id in day.experience_ids:
                if experience_id not in pool:
                    logger.debug("plan_creator.unknown_experience_dropped", experience_id=experience_id)
                    continue
                if (experience_id, day_number) in seen:
                    continue
                seen.add((experience_id, day_number))
                position += 1
                entries.append((experience_id, day_number, position))

        if not entries:
            logger.info("plan_creator.empty_plan_discarded", profile=profile.value, city=city)
            return None

        duration_days = proposal.duration_days if proposal.duration_days and proposal.duration_days > 0 else None
        duration_days = duration_days or len(proposal.days) or 1
        duration_days = max(duration_days, max(day for _, day, _ in entries))

        titles = localized_dict(proposal.titles)
        for locale in self.locales:
            if locale in DEFAULT_TITLES and not titles.get(locale):
                titles[locale] = default_title(profile, city, locale)
        notes = localized_dict(proposal.notes)

        plan = Plan(
            title=(titles.get("en") or next(iter(titles.values()), None) or default_title(profile, city, "en"))[:255],
            city_name=city or self.determine_primary_city([e[0] for e in entries], cities_by_experience),
            duration_days=duration_days,
            titles=titles,
            notes=notes,
            preferences={
                "tourist_profile": profile.value,
                "generated_by_ai": True,
                "generation_metadata": {
                    "generated_at": datetime.now(timezone.utc).isoformat(),
                    "reasoning": proposal.reasoning,
                    "duration_days": duration_days,
                },
            },
        )
        self.db.add(plan)
        await self.db.flush()
        for experience_id, day_number, position in entries:
            self.db.add(
                PlanExperience(plan_id=plan.id, experience_id=experience_id, day_number=day_number, position=position)
            )
        await self.db.flush()

        logger.info(
            "plan_creator.created",
            plan_id=plan.id,
            title=plan.title,
            profile=profile.value,
            experiences=len(entries),
            duration_days=duration_days,
        )
        return plan

    def _prompt(
        self,
        profile: TouristProfile,
        city: Optional[str],
        duration_days: Optional[int],
        experiences: Sequence[Experience],
        cities_by_experience: Dict[int, List[str]],
    ) -> str:
        traits = profile.traits
        listing = "\n\n".join(
            f"ID: {e.id} | {e.title}\n"
            f"  Category: {e.category_key or 'general'}\n"
            f"  Duration: {e.estimated_duration or 60} min\n"
            f"  Cities: {', '.join(dict.fromkeys(cities_by_experience.get(e.id, []))) or e.city or 'unknown'}"
            for e in experiences
        )
        if duration_days:
            duration_rule = f"The plan MUST be exactly {duration_days} days."
        else:
            suggested = suggested_duration(len(experiences), multi_city=city is None)
            duration_rule = f"Choose the best duration (1-5 days); about {suggested} days fits the available experiences."
        return (
            f"Create a {profile.value.upper()} travel plan for {city or self.target_country}.\n"
            f"Tourist profile: {traits.description}\n"
            f"Pace: {traits.pace}. Activities: {', '.join(traits.activities)}. Budget: {traits.budget}.\n"
            f"{duration_rule}\n\n"
            f"AVAILABLE EXPERIENCES:\n{listing}\n\n"
            "Pick 2-4 experiences per day using only the ids above, with a logical geographic flow. "
            "Write a compelling title and practical notes for this traveller type "
            f"in each locale: {', '.join(self.locales)}. Bosnian (bs) text must use ijekavica."
        )
