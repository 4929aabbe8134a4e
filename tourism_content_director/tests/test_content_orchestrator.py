"""
Content orchestrator:
- pure helpers: budgets, fallback plan, country filter.
- end-to-end run: plan -> locations (budget capped) -> local experiences; status completed.
- cancellation between cities keeps the finished city and marks the run cancelled;
  the checkpoints before the thematic and multi-city phases stop the run as well.
- a task cancelled from outside (shutdown) still ends in a terminal status and frees the lock.
- a failing plan phase keeps the city's committed locations and experiences.
- unexpected error -> GenerationError, status failed, lock released.
- lock held elsewhere -> GenerationInProgressError; ConfigurationError propagates.
"""
import asyncio

import pytest
from sqlalchemy import func, select

from conftest import add_experience, add_location, localized_answer, make_queue, no_sleep
from tourism_director.exceptions import ConfigurationError, GenerationError, GenerationInProgressError, RequestError
from tourism_director.models import Experience, ExperienceLocation, Location
from tourism_director.schemas.places import PlaceRecord
from tourism_director.services.content_orchestrator import (
    LOCK_NAME,
    ContentOrchestrator,
    CurrentState,
    build_fallback_plan,
    cancel_generation,
    content_stats,
    current_status,
    remaining_slots,
    resolve_budget,
    valid_location_for_country,
)
from tourism_director.services.job_lock_service import acquire_lock
from tourism_director.services.rate_limiter import RateLimiter

SARAJEVO = {
    "city": "Sarajevo",
    "country": "Bosnia and Herzegovina",
    "coordinates": {"lat": 43.8563, "lng": 18.4131},
    "locations_to_fetch": 20,
    "categories": ["tourism.sights", "entertainment.museum"],
    "reasoning": "Capital city",
}
MOSTAR = dict(SARAJEVO, city="Mostar", coordinates={"lat": 43.3438, "lng": 17.8078}, reasoning="Old bridge")


def _plan(*cities) -> dict:
    return {
        "analysis": "Nothing generated yet",
        "target_cities": list(cities),
        "tourist_profiles_to_generate": ["family"],
        "estimated_new_content": {"locations": 5, "experiences": 2, "plans": 0},
    }


def _enrichment(schema, context):
    if context.endswith(":metadata"):
        return {"suitable_experiences": ["cultural"], "tags": [], "practical_info": {"best_time": "", "duration_minutes": 60, "tips": []}}
    return localized_answer(schema, context)


def _experience(location_ids, title) -> dict:
    return {
        "location_ids": location_ids,
        "location_names": [],
        "category_key": "history",
        "estimated_duration": 90,
        "seasons": [],
        "titles": {"en": title, "bs": title},
        "descriptions": {"en": f"{title} walk", "bs": f"{title} šetnja"},
        "theme_reasoning": "",
    }


class FakePlaces:
    """Ten places per category and city, all inside the target country."""

    def __init__(self, on_search=None) -> None:
        self.searches = []
        self.on_search = on_search

    async def search_nearby(self, lat, lng, categories, radius=None, limit=20, lang="en"):
        self.searches.append((round(lat, 2), categories[0]))
        if self.on_search is not None:
            await self.on_search()
        category = categories[0]
        offset = len(self.searches) * 0.1 + lat
        return [
            PlaceRecord(
                place_id=f"{category}-{lat}-{i}",
                name=f"{category.split('.')[-1].title()} {lat} #{i}",
                address=f"Street {i}, Sarajevo, Bosnia and Herzegovina",
                lat=offset + i * 0.001,
                lng=lng,
                categories=[category],
            )
            for i in range(10)
        ]

    async def text_search(self, query, categories=(), limit=20, country_code=None, lang="en"):
        return []


class ThematicFailure:
    async def create_local_experiences(self, city, max_experiences=None):
        return []

    async def create_thematic_experiences(self, max_experiences=None):
        raise RuntimeError("thematic phase exploded")


class CancelDuringThematic:
    """Local phase creates nothing; the thematic phase requests cancellation."""

    async def create_local_experiences(self, city, max_experiences=None):
        return []

    async def create_thematic_experiences(self, max_experiences=None):
        await cancel_generation()
        return []


class RecordingPlans:
    def __init__(self, fail_for_city=False) -> None:
        self.cities = []
        self.fail_for_city = fail_for_city

    async def create_for_profile(self, profile, city=None, duration_days=None):
        self.cities.append(city)
        if city is not None and self.fail_for_city:
            raise RuntimeError("plan store unavailable")
        return None


class StalledQueue:
    """Blocks in the first request until the task is cancelled."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.calls = []

    async def request(self, prompt, schema=None, context="request_queue"):
        self.calls.append(context)
        self.entered.set()
        await asyncio.Event().wait()


def _orchestrator(db, queue, **kwargs) -> ContentOrchestrator:
    kwargs.setdefault("places", FakePlaces())
    return ContentOrchestrator(db, queue=queue, rate_limiter=RateLimiter(5, sleep=no_sleep), **kwargs)


def test_budgets() -> None:
    assert resolve_budget(None, 100) == 100
    assert resolve_budget(0, 100) is None
    assert resolve_budget(7, 100) == 7
    with pytest.raises(ValueError):
        resolve_budget(-1, 100)
    assert remaining_slots(None, 50) is None
    assert remaining_slots(5, 7) == 0
    assert remaining_slots(5, 2) == 3


def test_fallback_plan_defaults_to_main_destinations() -> None:
    plan = build_fallback_plan(CurrentState(target_country="Bosnia and Herzegovina"))

    assert [t.city for t in plan.target_cities] == ["Sarajevo", "Mostar", "Jajce"]
    assert plan.target_cities[0].coordinates.lat == pytest.approx(43.8563)
    assert plan.tourist_profiles_to_generate == ["family", "couple", "culture"]
    assert plan.estimated_new_content.locations == 60


def test_fallback_plan_prefers_underfilled_cities() -> None:
    state = CurrentState(
        existing_cities=["Banja Luka", "Sarajevo", "Tuzla"],
        locations_per_city={"Banja Luka": 3, "Sarajevo": 40, "Tuzla": 9},
    )

    plan = build_fallback_plan(state)

    assert [t.city for t in plan.target_cities] == ["Banja Luka", "Tuzla"]
    assert plan.target_cities[0].locations_to_fetch == 20


def test_fallback_plan_is_deterministic() -> None:
    underfilled = CurrentState(
        existing_cities=["Banja Luka", "Trebinje", "Sarajevo"],
        locations_per_city={"Banja Luka": 2, "Trebinje": 4, "Sarajevo": 40},
        target_country="Bosnia and Herzegovina",
    )
    empty = CurrentState(target_country="Bosnia and Herzegovina")

    for state in (underfilled, empty):
        assert build_fallback_plan(state).model_dump() == build_fallback_plan(state).model_dump()
    assert [t.city for t in build_fallback_plan(underfilled).target_cities] == ["Banja Luka", "Trebinje"]


def test_valid_location_for_country() -> None:
    inside = PlaceRecord(place_id="1", name="x", address="Titova 1, 71000 Sarajevo")
    marker = PlaceRecord(place_id="2", name="x", address="Somewhere, BiH")
    outside = PlaceRecord(place_id="3", name="x", address="Ilica 1, Zagreb, Croatia")

    assert valid_location_for_country(inside, "ba", "Sarajevo")
    assert valid_location_for_country(marker, "ba", "Mostar")
    assert not valid_location_for_country(outside, "ba", "Sarajevo")


@pytest.mark.asyncio
async def test_full_run_respects_location_budget(db) -> None:
    queue = make_queue({
        "orchestrator:plan": _plan(SARAJEVO),
        "location_enricher:": _enrichment,
        "experience_creator:local:Sarajevo": {
            "experiences": [_experience([1, 2, 3], "Old Town"), _experience([4, 5], "Museums")],
        },
        "experience_creator:thematic": {"experiences": []},
    })
    orchestrator = _orchestrator(db, queue, max_locations=5, max_experiences=0, skip_plans=True)

    results = await orchestrator.generate()

    assert results["status"] == "completed"
    assert results["locations_created"] == 5
    assert results["locations_enriched"] == 5
    assert results["experiences_created"] == 2
    assert results["plans_created"] == 0
    assert results["errors"] == []
    assert results["cities_processed"] == [{"city": "Sarajevo", "locations": 5, "experiences": 2, "plans": 0}]

    assert await db.scalar(select(func.count()).select_from(Location)) == 5
    linked = set((await db.execute(select(ExperienceLocation.location_id))).scalars().all())
    assert linked == {1, 2, 3, 4, 5}

    status = await current_status()
    assert status["status"] == "completed"
    assert status["plan"]["target_cities"][0]["city"] == "Sarajevo"
    assert status["results"]["locations_created"] == 5


@pytest.mark.asyncio
async def test_experience_budget_caps_local_experiences(db) -> None:
    queue = make_queue({
        "orchestrator:plan": _plan(SARAJEVO),
        "location_enricher:": _enrichment,
        "experience_creator:local:": {
            "experiences": [_experience([1, 2], "Old Town"), _experience([3, 4], "Museums")],
        },
    })

    results = await _orchestrator(db, queue, max_locations=4, max_experiences=1, skip_plans=True).generate()

    assert results["experiences_created"] == 1
    # Budget used up: the thematic phase never asks the LLM.
    assert not any(c.startswith("experience_creator:thematic") for c in queue.calls)


@pytest.mark.asyncio
async def test_cancellation_between_cities(db) -> None:
    queue = make_queue({"orchestrator:plan": _plan(SARAJEVO, MOSTAR), "location_enricher:": _enrichment})
    places = FakePlaces(on_search=cancel_generation)

    results = await _orchestrator(
        db, queue, places=places, max_locations=3, skip_experiences=True, skip_plans=True
    ).generate()

    assert results["status"] == "cancelled"
    assert [c["city"] for c in results["cities_processed"]] == ["Sarajevo"]
    assert all(lat == pytest.approx(43.86) for lat, _ in places.searches)
    assert await db.scalar(select(func.count()).select_from(Location)) == 3

    status = await current_status()
    assert status["status"] == "cancelled"
    assert status["message"] == "Generation was stopped by user"


@pytest.mark.asyncio
async def test_cancellation_during_last_city_skips_thematic_phase(db) -> None:
    queue = make_queue({
        "orchestrator:plan": _plan(SARAJEVO),
        "location_enricher:": _enrichment,
        "experience_creator:local:Sarajevo": {"experiences": [_experience([1, 2], "Old Town")]},
        "experience_creator:thematic": {"experiences": []},
    })
    places = FakePlaces(on_search=cancel_generation)

    results = await _orchestrator(db, queue, places=places, max_locations=3, skip_plans=True).generate()

    assert results["status"] == "cancelled"
    assert [c["city"] for c in results["cities_processed"]] == ["Sarajevo"]
    assert not any(c.startswith("experience_creator:thematic") for c in queue.calls)
    assert await db.scalar(select(func.count()).select_from(Location)) == 3
    assert (await current_status())["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancellation_after_thematic_skips_multi_city_plans(db) -> None:
    queue = make_queue({"orchestrator:plan": _plan(SARAJEVO)})
    plans = RecordingPlans()

    results = await _orchestrator(
        db, queue, skip_locations=True, experience_creator=CancelDuringThematic(), plan_creator=plans
    ).generate()

    assert results["status"] == "cancelled"
    assert plans.cities == ["Sarajevo"]


@pytest.mark.asyncio
async def test_task_cancelled_mid_run_ends_in_terminal_status(db) -> None:
    queue = StalledQueue()
    task = asyncio.create_task(_orchestrator(db, queue).generate())
    await queue.entered.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    status = await current_status()
    assert status["status"] == "cancelled"
    assert status["message"] == "Generation was interrupted by shutdown"
    assert status["results"]["status"] == "cancelled"
    assert queue.calls == ["orchestrator:plan"]
    assert await acquire_lock(LOCK_NAME, "next-run", ttl_seconds=60) is True


@pytest.mark.asyncio
async def test_plan_phase_failure_keeps_city_content(db) -> None:
    queue = make_queue({
        "orchestrator:plan": _plan(SARAJEVO),
        "location_enricher:": _enrichment,
        "experience_creator:local:Sarajevo": {
            "experiences": [_experience([1, 2, 3], "Old Town"), _experience([4, 5], "Museums")],
        },
        "experience_creator:thematic": {"experiences": []},
    })
    plans = RecordingPlans(fail_for_city=True)

    results = await _orchestrator(db, queue, max_locations=5, plan_creator=plans).generate()

    assert results["status"] == "completed"
    assert results["errors"] == [{"city": "Sarajevo", "phase": "plans", "error": "plan store unavailable"}]
    assert results["cities_processed"] == []
    assert results["locations_created"] == 5
    assert results["experiences_created"] == 2
    assert results["plans_created"] == 0
    assert await db.scalar(select(func.count()).select_from(Location)) == 5
    assert await db.scalar(select(func.count()).select_from(Experience)) == 2
    # Multi-city plans still ran after the city failure.
    assert plans.cities == ["Sarajevo", None]


@pytest.mark.asyncio
async def test_unexpected_error_fails_run_and_releases_lock(db) -> None:
    queue = make_queue({"orchestrator:plan": RequestError("planner down")})
    orchestrator = _orchestrator(
        db, queue, skip_locations=True, skip_plans=True, experience_creator=ThematicFailure()
    )

    with pytest.raises(GenerationError):
        await orchestrator.generate()

    status = await current_status()
    assert status["status"] == "failed"
    assert "thematic phase exploded" in status["message"]
    # Fallback plan was used for the city phase.
    assert [c["city"] for c in orchestrator.results["cities_processed"]] == ["Sarajevo", "Mostar", "Jajce"]
    assert await acquire_lock(LOCK_NAME, "next-run", ttl_seconds=60) is True


@pytest.mark.asyncio
async def test_lock_held_elsewhere(db) -> None:
    await acquire_lock(LOCK_NAME, "someone-else", ttl_seconds=60)

    with pytest.raises(GenerationInProgressError):
        await _orchestrator(db, make_queue()).generate()


@pytest.mark.asyncio
async def test_configuration_error_propagates(db) -> None:
    queue = make_queue({"orchestrator:plan": ConfigurationError("OPENAI_API_KEY is not configured")})

    with pytest.raises(ConfigurationError):
        await _orchestrator(db, queue).generate()

    assert (await current_status())["status"] == "failed"


@pytest.mark.asyncio
async def test_content_stats(db) -> None:
    old_town = await add_location(db, "Baščaršija")
    bridge = await add_location(db, "Stari most", city="Mostar")
    tunnel = await add_location(db, "Tunnel of Hope")
    await add_experience(db, "Old Town Walk", [old_town, tunnel])
    await add_experience(db, "Two Cities", [old_town, bridge])
    await db.commit()

    stats = await content_stats(db)

    assert [c["city"] for c in stats["cities"]] == ["Sarajevo", "Mostar"]
    assert stats["cities"][0] == {"city": "Sarajevo", "locations": 2, "experiences": 2, "plans": 0, "ai_plans": 0}
    assert stats["totals"] == {"locations": 3, "experiences": 3, "plans": 0, "ai_plans": 0}
