"""
Shared fixtures: in-memory SQLite database (fresh per test) and a fake request queue.
Environment is set before the application package is imported.
"""
import itertools
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"
os.environ["AI_SUPPORTED_LOCALES"] = "en,bs"
os.environ["GEOAPIFY_API_KEY"] = "test-key"

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest_asyncio  # noqa: E402

from tourism_director.models import Experience, ExperienceLocation, Location, Plan, PlanExperience  # noqa: E402
from tourism_director.db import Base, async_session_factory, engine  # noqa: E402
from tourism_director.exceptions import RequestError  # noqa: E402


@pytest_asyncio.fixture
async def db_tables():
    """Create all tables; disposing the engine afterwards drops the in-memory database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_tables):
    async with async_session_factory() as session:
        yield session


def localized_answer(schema: Any, context: str) -> Dict[str, Any]:
    """Answer for a {field: {locale: text}} model, text filled for every requested locale."""
    field = next(iter(schema.model_fields))
    locales = schema.model_fields[field].annotation.model_fields
    return {field: {locale: f"{field} {locale}" for locale in locales}}


class FakeQueue:
    """
    Stand-in for RequestQueue. responses maps a context prefix to a dict (validated
    against the schema), an exception (raised) or a callable(schema, context) -> dict.
    First matching prefix wins; no match raises RequestError.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = responses or {}
        self.calls: List[str] = []
        self.prompts: List[str] = []

    async def request(self, prompt: str, schema: Any = None, context: str = "request_queue") -> Any:
        self.calls.append(context)
        self.prompts.append(prompt)
        for prefix, response in self.responses.items():
            if not context.startswith(prefix):
                continue
            if isinstance(response, Exception):
                raise response
            if callable(response):
                response = response(schema, context)
            return schema.model_validate(response) if schema is not None else response
        raise RequestError("no fake response configured", context=context)


def make_queue(responses: Optional[Dict[str, Any]] = None) -> FakeQueue:
    return FakeQueue(responses)


async def no_sleep(seconds: float) -> None:
    return None


_coordinates = itertools.count(1)


async def add_location(db, name: str, city: str = "Sarajevo", location_type: str = "place", **fields):
    """Persist a location; each call gets distinct coordinates."""
    step = next(_coordinates)
    location = Location(
        name=name,
        city=city,
        lat=fields.pop("lat", 43.0 + 0.01 * step),
        lng=fields.pop("lng", 18.0 + 0.01 * step),
        location_type=location_type,
        categories=fields.pop("categories", ["tourism.sights"]),
        **fields,
    )
    db.add(location)
    await db.flush()
    return location


async def add_experience(db, title: str, locations, city: str = "Sarajevo", **fields):
    experience = Experience(
        title=title,
        city=city,
        titles=fields.pop("titles", {"en": title}),
        descriptions=fields.pop("descriptions", {"en": f"{title} description"}),
        **fields,
    )
    db.add(experience)
    await db.flush()
    for position, location in enumerate(locations, start=1):
        db.add(ExperienceLocation(experience_id=experience.id, location_id=location.id, position=position))
    await db.flush()
    return experience


async def add_plan(db, title: str, experiences, city: str = "Sarajevo", profile: str = "family", **fields):
    """Plan with one experience per day, in the given order."""
    plan = Plan(
        title=title,
        city_name=city,
        duration_days=fields.pop("duration_days", max(1, len(experiences))),
        titles=fields.pop("titles", {"en": title}),
        notes=fields.pop("notes", {"en": f"{title} notes"}),
        preferences=fields.pop("preferences", {"tourist_profile": profile, "generated_by_ai": True}),
        **fields,
    )
    db.add(plan)
    await db.flush()
    for day, experience in enumerate(experiences, start=1):
        db.add(PlanExperience(plan_id=plan.id, experience_id=experience.id, day_number=day, position=1))
    await db.flush()
    return plan
