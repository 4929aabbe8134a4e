"""
Content orchestrator: one autonomous generation run.

idle -> in_progress -> completed | cancelled | failed

Plan phase asks the LLM for an orchestration plan (deterministic fallback on failure),
then cities are processed strictly in plan order: locations -> local experiences ->
city plans. After all cities: thematic experiences, then multi-city plans.
Each city phase commits on success; a failing phase is rolled back (earlier phases of
that city are kept), recorded in results["errors"] and the run continues. Cancellation is polled at the start of each
city and before both cross-city phases. Runs are mutually exclusive via a job lock.

Budgets: None = default cap, 0 = unlimited, n > 0 = hard cap checked before every creation.
Runs restart from a fresh query of the database; there is no resume of a previous run.
"""
import asyncio
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourism_director.config import get_settings
from tourism_director.exceptions import (
    CancellationError,
    ConfigurationError,
    GenerationError,
    GenerationInProgressError,
    PlacesApiError,
    RequestError,
)
from tourism_director.logging_config import bind_log_context, get_logger, unbind_log_context
from tourism_director.models import Experience, ExperienceLocation, Location, Plan
from tourism_director.schemas.llm_outputs import Coordinates, EstimatedContent, OrchestrationPlan, TargetCity
from tourism_director.schemas.places import PlaceRecord
from tourism_director.services.cancellation import CancellationToken, PersistedCancellationToken
from tourism_director.services.experience_creator import ExperienceCreator
from tourism_director.services.job_lock_service import acquire_lock, force_release_lock, release_lock
from tourism_director.services.location_enricher import LocationEnricher
from tourism_director.services.places_service import PlacesService
from tourism_director.services.plan_creator import PlanCreator
from tourism_director.services.rate_limiter import RateLimiter
from tourism_director.services.request_queue import RequestQueue
from tourism_director.services.setting_store import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    RunStatus,
    SettingStore,
    read_setting,
)

logger = get_logger(__name__)

STATUS_NAMESPACE = "ai.generation"
LOCK_NAME = "ai.generation"

DEFAULT_MAX_LOCATIONS = 100
DEFAULT_MAX_EXPERIENCES = 200
DEFAULT_MAX_PLANS = 50

MIN_LOCATIONS_PER_CITY = 10
FALLBACK_LOCATIONS_TO_FETCH = 20
DEFAULT_LOCATIONS_TO_FETCH = 20
FALLBACK_MAX_CITIES = 3
MULTI_CITY_PLAN_PROFILES = 3
FALLBACK_PROFILES = ("family", "couple", "culture")
FALLBACK_ESTIMATES = EstimatedContent(locations=60, experiences=10, plans=12)
COUNTRY_MARKERS = ("bosnia", "herzegovina", "bih")

DEFAULT_CATEGORIES = (
    "tourism.attraction",
    "tourism.sights",
    "catering.restaurant",
    "catering.cafe",
    "entertainment.museum",
    "heritage",
    "religion.place_of_worship",
    "natural",
)

# (city, lat, lng, locations_to_fetch, reasoning)
DEFAULT_TARGET_CITIES = (
    ("Sarajevo", 43.8563, 18.4131, 30, "Capital city, main tourist destination"),
    ("Mostar", 43.3438, 17.8078, 25, "UNESCO World Heritage Site - Stari Most"),
    ("Jajce", 44.3422, 17.2703, 15, "Historic town with waterfall"),
)

PLACES_CATEGORY_HINTS = (
    "tourism.attraction, tourism.sights, tourism.sights.castle, tourism.sights.fort, "
    "tourism.sights.monastery, tourism.sights.memorial, tourism.viewpoint, "
    "catering.restaurant, catering.cafe, catering.bar, entertainment.museum, "
    "entertainment.culture.theatre, entertainment.culture.gallery, "
    "tourism.sights.place_of_worship.mosque, tourism.sights.place_of_worship.church, "
    "natural.water, natural.water.spring, natural.water.hot_spring, natural.mountain.peak, "
    "natural.mountain.cave_entrance, natural.protected_area, heritage.unesco, leisure.park, leisure.spa"
)


@dataclass
class CurrentState:
    """Snapshot of existing content the plan phase reasons about."""

    existing_cities: List[str] = field(default_factory=list)
    locations_per_city: Dict[str, int] = field(default_factory=dict)
    experiences_per_city: Dict[str, int] = field(default_factory=dict)
    plans_per_city: Dict[str, int] = field(default_factory=dict)
    target_country: str = ""
    target_country_code: str = ""
    max_experiences: Optional[int] = None


def resolve_budget(value: Optional[int], default: int) -> Optional[int]:
    """None -> default cap, 0 -> unlimited (None), n -> n."""
    if value is None:
        return default
    if value == 0:
        return None
    if value < 0:
        raise ValueError("budget_must_not_be_negative")
    return value


def remaining_slots(limit: Optional[int], used: int) -> Optional[int]:
    """Slots left under limit; None when unlimited."""
    if limit is None:
        return None
    return max(0, limit - used)


def build_fallback_plan(state: CurrentState) -> OrchestrationPlan:
    """
    Deterministic plan used when the reasoning call fails: existing cities with fewer
    than MIN_LOCATIONS_PER_CITY locations, else the default city list; first 3 cities.
    """
    targets = [
        TargetCity(
            city=city,
            country=state.target_country,
            locations_to_fetch=FALLBACK_LOCATIONS_TO_FETCH,
            categories=list(DEFAULT_CATEGORIES),
            reasoning="Existing city with insufficient content",
        )
        for city in state.existing_cities
        if state.locations_per_city.get(city, 0) < MIN_LOCATIONS_PER_CITY
    ]
    if not targets:
        targets = [
            TargetCity(
                city=city,
                country=state.target_country,
                coordinates=Coordinates(lat=lat, lng=lng),
                locations_to_fetch=to_fetch,
                categories=list(DEFAULT_CATEGORIES),
                reasoning=reasoning,
            )
            for city, lat, lng, to_fetch, reasoning in DEFAULT_TARGET_CITIES
        ]
    return OrchestrationPlan(
        analysis="Fallback plan - using default configuration",
        target_cities=targets[:FALLBACK_MAX_CITIES],
        tourist_profiles_to_generate=list(FALLBACK_PROFILES),
        estimated_new_content=FALLBACK_ESTIMATES.model_copy(),
    )


def valid_location_for_country(place: PlaceRecord, country_code: str, city: str) -> bool:
    """Heuristic: the address mentions the city, the country code or a country marker."""
    address = (place.address or "").lower()
    if city and city.lower() in address:
        return True
    markers = tuple(m for m in (country_code.lower(),) + COUNTRY_MARKERS if m)
    return any(marker in address for marker in markers)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContentOrchestrator:
    """Runs one generation: plan phase, then per-city execution, then cross-city phases."""

    def __init__(
        self,
        db: AsyncSession,
        max_locations: Optional[int] = None,
        max_experiences: Optional[int] = None,
        max_plans: Optional[int] = None,
        skip_locations: bool = False,
        skip_experiences: bool = False,
        skip_plans: bool = False,
        queue: Optional[RequestQueue] = None,
        places: Optional[PlacesService] = None,
        rate_limiter: Optional[RateLimiter] = None,
        store: Optional[SettingStore] = None,
        token: Optional[CancellationToken] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        enricher: Optional[LocationEnricher] = None,
        experience_creator: Optional[ExperienceCreator] = None,
        plan_creator: Optional[PlanCreator] = None,
    ) -> None:
        self.settings = get_settings()
        self.db = db
        self.max_locations = resolve_budget(max_locations, DEFAULT_MAX_LOCATIONS)
        self.max_experiences = resolve_budget(max_experiences, DEFAULT_MAX_EXPERIENCES)
        self.max_plans = resolve_budget(max_plans, DEFAULT_MAX_PLANS)
        self.skip_locations = skip_locations
        self.skip_experiences = skip_experiences
        self.skip_plans = skip_plans

        self.store = store or SettingStore(session_factory)
        self.run_status = RunStatus(STATUS_NAMESPACE, self.store)
        self.token = token or PersistedCancellationToken(self.run_status)
        self.session_factory = session_factory
        self.queue = queue or RequestQueue(self.settings)
        self.places = places or PlacesService(self.settings)
        self.rate_limiter = rate_limiter or RateLimiter(self.settings.geoapify_rate_limit)
        locales = self.settings.supported_locales
        self.enricher = enricher or LocationEnricher(db, self.queue, locales)
        self.experience_creator = experience_creator or ExperienceCreator(db, self.queue, locales)
        self.plan_creator = plan_creator or PlanCreator(db, self.queue, locales)

        self.run_id: Optional[str] = None
        self.results: Dict[str, Any] = {
            "started_at": _now_iso(),
            "finished_at": None,
            "locations_created": 0,
            "locations_enriched": 0,
            "experiences_created": 0,
            "plans_created": 0,
            "errors": [],
            "cities_processed": [],
            "skipped": {
                "locations": skip_locations,
                "experiences": skip_experiences,
                "plans": skip_plans,
            },
        }

    # --- entry point ----------------------------------------------------------

    async def generate(self) -> Dict[str, Any]:
        """
        Run the whole pipeline and return results.
        Raises GenerationInProgressError when another run holds the lock,
        ConfigurationError for missing credentials and GenerationError for anything
        unexpected; a cancelled run returns normally with status "cancelled".
        """
        self.run_id = uuid.uuid4().hex[:12]
        acquired = await acquire_lock(
            LOCK_NAME,
            self.run_id,
            self.settings.generation_lock_ttl_seconds,
            self.session_factory,
        )
        if not acquired:
            raise GenerationInProgressError("A generation run is already in progress")

        bind_log_context(run_id=self.run_id)
        try:
            return await self._run()
        finally:
            await release_lock(LOCK_NAME, self.run_id, self.session_factory)
            unbind_log_context("run_id")

    async def _run(self) -> Dict[str, Any]:
        logger.info(
            "orchestrator.started",
            max_locations=self.max_locations,
            max_experiences=self.max_experiences,
            max_plans=self.max_plans,
            skipped=self.results["skipped"],
        )
        self.results["started_at"] = _now_iso()
        await self.run_status.clear_cancellation()
        await self._save(STATUS_IN_PROGRESS, "AI reasoning phase")

        try:
            await self.token.raise_if_cancelled("plan phase")
            plan = await self.analyze_and_plan()
            logger.info("orchestrator.plan_ready", analysis=plan.analysis, cities=[t.city for t in plan.target_cities])
            await self._save(STATUS_IN_PROGRESS, "Executing plan", plan=plan.model_dump())

            await self.execute_plan(plan)

            self.results["finished_at"] = _now_iso()
            self.results["status"] = STATUS_COMPLETED
            await self._save(STATUS_COMPLETED, "Generation complete", results=self.results)
            logger.info(
                "orchestrator.completed",
                locations=self.results["locations_created"],
                experiences=self.results["experiences_created"],
                plans=self.results["plans_created"],
                errors=len(self.results["errors"]),
            )
            return self.results
        except CancellationError as e:
            await self.db.rollback()
            self.results["finished_at"] = _now_iso()
            self.results["status"] = STATUS_CANCELLED
            await self._save(STATUS_CANCELLED, "Generation was stopped by user", results=self.results)
            logger.info("orchestrator.cancelled", checkpoint=str(e))
            return self.results
        except asyncio.CancelledError:
            # Task cancelled from outside (shutdown): record a terminal state, then propagate.
            await self.db.rollback()
            self.results["finished_at"] = _now_iso()
            self.results["status"] = STATUS_CANCELLED
            await self._save(STATUS_CANCELLED, "Generation was interrupted by shutdown", results=self.results)
            logger.warning("orchestrator.interrupted")
            raise
        except ConfigurationError as e:
            await self._fail(e)
            raise
        except Exception as e:
            await self._fail(e)
            raise GenerationError(str(e)) from e

    async def _fail(self, error: Exception) -> None:
        await self.db.rollback()
        self.results["finished_at"] = _now_iso()
        self.results["status"] = STATUS_FAILED
        self.results["error"] = str(error)
        await self._save(STATUS_FAILED, str(error), results=self.results)
        logger.error("orchestrator.failed", error=str(error), error_type=type(error).__name__)

    # --- plan phase -----------------------------------------------------------

    async def gather_current_state(self) -> CurrentState:
        r = await self.db.execute(
            select(Location.city, func.count(Location.id)).group_by(Location.city).order_by(Location.city)
        )
        locations_per_city = {city: count for city, count in r.all() if city}

        r = await self.db.execute(
            select(Location.city, func.count(func.distinct(ExperienceLocation.experience_id)))
            .join(Location, Location.id == ExperienceLocation.location_id)
            .group_by(Location.city)
        )
        experiences_per_city = {city: count for city, count in r.all() if city}

        r = await self.db.execute(select(Plan.city_name, Plan.preferences))
        plans_per_city: Dict[str, int] = {}
        for city, preferences in r.all():
            if city and (preferences or {}).get("generated_by_ai"):
                plans_per_city[city] = plans_per_city.get(city, 0) + 1

        return CurrentState(
            existing_cities=list(locations_per_city),
            locations_per_city=locations_per_city,
            experiences_per_city=experiences_per_city,
            plans_per_city=plans_per_city,
            target_country=await read_setting(self.db, "ai.target_country", self.settings.ai_target_country),
            target_country_code=await self._country_code(),
            max_experiences=self.max_experiences,
        )

    async def analyze_and_plan(self) -> OrchestrationPlan:
        """LLM plan, or the deterministic fallback when the call fails or names no city."""
        state = await self.gather_current_state()
        try:
            plan = await self.queue.request(
                self._reasoning_prompt(state),
                schema=OrchestrationPlan,
                context="orchestrator:plan",
            )
        except RequestError as e:
            logger.warning("orchestrator.plan_failed_using_fallback", error=str(e))
            return build_fallback_plan(state)
        if not plan.target_cities:
            logger.warning("orchestrator.empty_plan_using_fallback")
            return build_fallback_plan(state)
        return plan

    # --- execute phase --------------------------------------------------------

    async def execute_plan(self, plan: OrchestrationPlan) -> None:
        profiles = plan.tourist_profiles_to_generate or list(FALLBACK_PROFILES)
        for target in plan.target_cities:
            await self.token.raise_if_cancelled(f"city {target.city}")
            await self.process_city(target, profiles)

        await self.token.raise_if_cancelled("thematic experiences")
        await self.create_cross_city_experiences()

        await self.token.raise_if_cancelled("multi-city plans")
        await self.create_multi_city_plans(profiles)

    async def process_city(self, target: TargetCity, profiles: Sequence[str]) -> None:
        """Locations, local experiences and plans for one city; failures stay local to it."""
        city = target.city.strip()
        if not city:
            logger.warning("orchestrator.blank_city_skipped")
            return
        logger.info("orchestrator.city_started", city=city)
        await self._save(STATUS_IN_PROGRESS, f"Processing {city}")

        counters = self._counters()
        city_result = {"city": city, "locations": 0, "experiences": 0, "plans": 0}
        phase = "locations"
        try:
            if not self.skip_locations and not self._locations_exhausted():
                places = await self.fetch_locations(target)
                logger.info("orchestrator.places_fetched", city=city, count=len(places))
                city_result["locations"] = await self.enrich_and_save_locations(places, city)
                await self.db.commit()
                counters = self._counters()

            phase = "experiences"
            if not self.skip_experiences and not self._experiences_exhausted():
                experiences = await self.experience_creator.create_local_experiences(
                    city,
                    max_experiences=remaining_slots(self.max_experiences, self.results["experiences_created"]),
                )
                self.results["experiences_created"] += len(experiences)
                await self.db.commit()
                counters = self._counters()
                city_result["experiences"] = len(experiences)

            phase = "plans"
            if not self.skip_plans and not self._plans_exhausted():
                plans = await self._create_plans(profiles, city)
                await self.db.commit()
                city_result["plans"] = plans
        except (CancellationError, ConfigurationError):
            raise
        except Exception as e:
            # Earlier phases are committed; only the failing phase is rolled back.
            await self.db.rollback()
            self._restore_counters(counters)
            logger.warning(
                "orchestrator.city_failed", city=city, phase=phase, error=str(e), error_type=type(e).__name__
            )
            self.results["errors"].append({"city": city, "phase": phase, "error": str(e)})
            return

        self.results["cities_processed"].append(city_result)
        logger.info("orchestrator.city_done", **city_result)

    async def fetch_locations(self, target: TargetCity) -> List[PlaceRecord]:
        """Rate-limited per-category search, country filtered, deduped by place_id."""
        categories = [c for c in target.categories if c] or list(DEFAULT_CATEGORIES)
        wanted = target.locations_to_fetch if target.locations_to_fetch is not None else DEFAULT_LOCATIONS_TO_FETCH
        if wanted <= 0:
            return []
        per_category = math.ceil(wanted / len(categories)) + 5
        country_code = await self._country_code()

        collected: List[PlaceRecord] = []
        async for batch in self.rate_limiter.batches(categories):
            for category in batch:
                if len(collected) >= wanted:
                    break
                try:
                    if target.coordinates is not None:
                        places = await self.places.search_nearby(
                            target.coordinates.lat,
                            target.coordinates.lng,
                            [category],
                            radius=self.settings.places_search_radius,
                            limit=per_category,
                        )
                    else:
                        places = await self.places.text_search(
                            f"{category.split('.')[-1]} {target.city}",
                            categories=[category],
                            limit=per_category,
                            country_code=country_code,
                        )
                except PlacesApiError as e:
                    logger.warning("orchestrator.places_error", city=target.city, category=category, error=str(e))
                    continue
                collected.extend(p for p in places if valid_location_for_country(p, country_code, target.city))
            if len(collected) >= wanted:
                break

        unique: Dict[str, PlaceRecord] = {}
        for place in collected:
            unique.setdefault(place.place_id, place)
        return list(unique.values())[:wanted]

    async def enrich_and_save_locations(self, places: Sequence[PlaceRecord], city: str) -> int:
        """Create locations until the budget is used up. Returns how many were new."""
        r = await self.db.execute(select(Location.id))
        known_ids = set(r.scalars().all())
        created = 0
        for place in places:
            if self._locations_exhausted():
                logger.info("orchestrator.location_budget_reached", max_locations=self.max_locations)
                break
            location = await self.enricher.create_and_enrich(place, city)
            if location is None or location.id in known_ids:
                continue
            known_ids.add(location.id)
            created += 1
            self.results["locations_created"] += 1
            if location.descriptions:
                self.results["locations_enriched"] += 1
        return created

    async def create_cross_city_experiences(self) -> None:
        if self.skip_experiences or self._experiences_exhausted():
            return
        logger.info("orchestrator.thematic_started")
        await self._save(STATUS_IN_PROGRESS, "Creating thematic experiences")
        experiences = await self.experience_creator.create_thematic_experiences(
            max_experiences=remaining_slots(self.max_experiences, self.results["experiences_created"]),
        )
        await self.db.commit()
        self.results["experiences_created"] += len(experiences)

    async def create_multi_city_plans(self, profiles: Sequence[str]) -> None:
        if self.skip_plans or self._plans_exhausted():
            return
        logger.info("orchestrator.multi_city_plans_started")
        await self._save(STATUS_IN_PROGRESS, "Creating multi-city plans")
        await self._create_plans(list(profiles)[:MULTI_CITY_PLAN_PROFILES], None)
        await self.db.commit()

    async def _create_plans(self, profiles: Sequence[str], city: Optional[str]) -> int:
        created = 0
        for profile in profiles:
            if self._plans_exhausted():
                logger.info("orchestrator.plan_budget_reached", max_plans=self.max_plans)
                break
            plan = await self.plan_creator.create_for_profile(profile, city=city)
            if plan is not None:
                created += 1
                self.results["plans_created"] += 1
        return created

    # --- budgets --------------------------------------------------------------

    def _locations_exhausted(self) -> bool:
        return remaining_slots(self.max_locations, self.results["locations_created"]) == 0

    def _experiences_exhausted(self) -> bool:
        return remaining_slots(self.max_experiences, self.results["experiences_created"]) == 0

    def _plans_exhausted(self) -> bool:
        return remaining_slots(self.max_plans, self.results["plans_created"]) == 0

    def _counters(self) -> Dict[str, int]:
        keys = ("locations_created", "locations_enriched", "experiences_created", "plans_created")
        return {k: self.results[k] for k in keys}

    def _restore_counters(self, counters: Dict[str, int]) -> None:
        """Counts of a rolled-back phase are not kept."""
        self.results.update(counters)

    # --- helpers --------------------------------------------------------------

    async def _country_code(self) -> str:
        return await read_setting(self.db, "ai.target_country_code", self.settings.ai_target_country_code)

    async def _save(self, status: str, message: str, plan: Any = None, results: Any = None) -> None:
        await self.run_status.save(status, message, plan=plan, results=results, started_at=self.results["started_at"])

    def _reasoning_prompt(self, state: CurrentState) -> str:
        limit_line = f"- Maximum experiences to create: {state.max_experiences}\n" if state.max_experiences else ""
        return (
            "Analyze the current state of tourism content and create an action plan.\n"
            f"TARGET COUNTRY: {state.target_country} ({state.target_country_code})\n\n"
            "CURRENT STATE:\n"
            f"- Existing cities: {', '.join(state.existing_cities) or 'None'}\n"
            f"- Locations per city: {state.locations_per_city}\n"
            f"- Experiences per city: {state.experiences_per_city}\n"
            f"- AI plans per city: {state.plans_per_city}\n"
            f"{limit_line}\n"
            "1. Find cities with insufficient content (fewer than 10 locations).\n"
            f"2. Suggest major tourist destinations in {state.target_country} not yet covered, with coordinates.\n"
            "3. Choose the place categories each city needs from: "
            f"{PLACES_CATEGORY_HINTS}.\n"
            "4. Choose tourist profiles for plans from: family, couple, adventure, culture, budget, luxury, foodie, solo.\n"
            "Prioritize UNESCO sites and balance cultural and natural content."
        )


# --- admin operations (status namespace ai.generation) -------------------------


def _run_status(store: Optional[SettingStore] = None) -> RunStatus:
    return RunStatus(STATUS_NAMESPACE, store)


async def current_status(store: Optional[SettingStore] = None) -> Dict[str, Any]:
    return await _run_status(store).current()


async def cancel_generation(store: Optional[SettingStore] = None) -> None:
    """Set the cancellation flag; the running job sees it at its next checkpoint."""
    await _run_status(store).request_cancel("Generation was stopped by user")
    logger.info("orchestrator.cancel_requested")


async def is_cancelled(store: Optional[SettingStore] = None) -> bool:
    return await _run_status(store).is_cancelled()


async def clear_cancellation(store: Optional[SettingStore] = None) -> None:
    await _run_status(store).clear_cancellation()


async def force_reset(
    store: Optional[SettingStore] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    """Back to idle and drop the run lock (stuck job after a worker crash)."""
    await _run_status(store).force_reset()
    await force_release_lock(LOCK_NAME, session_factory)


async def content_stats(db: AsyncSession) -> Dict[str, Any]:
    """Per-city locations / experiences / plans / AI plans, sorted by location count, plus totals."""
    r = await db.execute(select(Location.city, func.count(Location.id)).group_by(Location.city))
    locations_by_city = {city: count for city, count in r.all() if city}

    r = await db.execute(
        select(Location.city, func.count(func.distinct(Experience.id)))
        .select_from(Experience)
        .join(ExperienceLocation, ExperienceLocation.experience_id == Experience.id)
        .join(Location, Location.id == ExperienceLocation.location_id)
        .group_by(Location.city)
    )
    experiences_by_city = {city: count for city, count in r.all() if city}

    r = await db.execute(select(Plan.city_name, Plan.preferences))
    plans_by_city: Dict[str, int] = {}
    ai_plans_by_city: Dict[str, int] = {}
    for city, preferences in r.all():
        if not city:
            continue
        plans_by_city[city] = plans_by_city.get(city, 0) + 1
        if (preferences or {}).get("generated_by_ai"):
            ai_plans_by_city[city] = ai_plans_by_city.get(city, 0) + 1

    cities = [
        {
            "city": city,
            "locations": count,
            "experiences": experiences_by_city.get(city, 0),
            "plans": plans_by_city.get(city, 0),
            "ai_plans": ai_plans_by_city.get(city, 0),
        }
        for city, count in locations_by_city.items()
    ]
    cities.sort(key=lambda s: -s["locations"])
    totals = {key: sum(s[key] for s in cities) for key in ("locations", "experiences", "plans", "ai_plans")}
    return {"cities": cities, "totals": totals}
