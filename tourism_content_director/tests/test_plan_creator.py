"""
Plan creator:
- unknown experience ids dropped, repeated (experience, day) ignored, days keep positions.
- no usable entry -> no plan; unknown profile -> no plan; plan.min_experiences setting.
- missing titles filled with profile defaults; primary city from experience locations.
"""
import pytest
from sqlalchemy import func, select

from conftest import add_experience, add_location, make_queue
from tourism_director.exceptions import RequestError
from tourism_director.models import Plan, PlanExperience, Setting
from tourism_director.services.catalog import TouristProfile
from tourism_director.services.plan_creator import PlanCreator, default_title, suggested_duration


def _proposal(days, titles=None, duration_days=2) -> dict:
    return {
        "duration_days": duration_days,
        "titles": titles or {"en": "Sarajevo with Kids", "bs": ""},
        "notes": {"en": "Bring snacks.", "bs": "Ponesite užinu."},
        "days": days,
        "reasoning": "short walks",
    }


async def _experiences(db):
    old_town = await add_location(db, "Baščaršija")
    tunnel = await add_location(db, "Tunnel of Hope")
    bridge = await add_location(db, "Stari most", city="Mostar")
    return [
        await add_experience(db, "Old Town Walk", [old_town]),
        await add_experience(db, "War History", [tunnel, old_town]),
        await add_experience(db, "Bridges", [bridge], city="Mostar"),
    ]


def test_default_title_and_duration() -> None:
    assert default_title(TouristProfile.FAMILY, "Mostar", "en") == "Family Adventure - Mostar"
    assert default_title(TouristProfile.FOODIE, None, "bs") == "Kulinarska tura BiH"
    assert default_title(TouristProfile.SOLO, "Jajce", "de") == "Solo Discovery - Jajce"
    assert suggested_duration(9, multi_city=False) == 3
    assert suggested_duration(1, multi_city=True) == 2


@pytest.mark.asyncio
async def test_plan_created_from_valid_entries(db) -> None:
    old_town, war, _ = await _experiences(db)
    queue = make_queue({
        "plan_creator:family:Sarajevo": _proposal([
            {"day_number": 1, "theme": "old town", "experience_ids": [old_town.id, 999, old_town.id]},
            {"day_number": 2, "theme": "history", "experience_ids": [war.id, old_town.id]},
        ]),
    })

    plan = await PlanCreator(db, queue=queue, locales=["en", "bs"]).create_for_profile("family", city="Sarajevo")

    assert plan.title == "Sarajevo with Kids"
    assert plan.city_name == "Sarajevo"
    assert plan.duration_days == 2
    assert plan.titles["bs"] == "Porodična avantura - Sarajevo"
    assert plan.notes == {"en": "Bring snacks.", "bs": "Ponesite užinu."}
    assert plan.preferences["tourist_profile"] == "family"
    assert plan.preferences["generated_by_ai"] is True

    rows = (await db.execute(
        select(PlanExperience.experience_id, PlanExperience.day_number, PlanExperience.position)
        .where(PlanExperience.plan_id == plan.id)
        .order_by(PlanExperience.day_number, PlanExperience.position)
    )).all()
    assert [tuple(r) for r in rows] == [(old_town.id, 1, 1), (war.id, 2, 1), (old_town.id, 2, 2)]

    # Only experiences with a location in Sarajevo are offered.
    assert "Bridges" not in queue.prompts[0]


@pytest.mark.asyncio
async def test_only_unknown_ids_discards_plan(db) -> None:
    await _experiences(db)
    queue = make_queue({"plan_creator:": _proposal([{"day_number": 1, "theme": "", "experience_ids": [998, 999]}])})

    plan = await PlanCreator(db, queue=queue, locales=["en"]).create_for_profile("culture")

    assert plan is None
    assert await db.scalar(select(func.count()).select_from(Plan)) == 0


@pytest.mark.asyncio
async def test_multi_city_plan_takes_primary_city(db) -> None:
    old_town, war, bridges = await _experiences(db)
    queue = make_queue({
        "plan_creator:culture:multi-city": _proposal(
            [{"day_number": 3, "theme": "", "experience_ids": [bridges.id, war.id]}],
            titles={"en": "", "bs": ""},
            duration_days=0,
        ),
    })

    plan = await PlanCreator(db, queue=queue, locales=["en", "bs"]).create_for_profile("Culture")

    assert plan.city_name == "Sarajevo"
    assert plan.duration_days == 3
    assert plan.title == "Cultural Discovery BiH"
    assert plan.titles == {"en": "Cultural Discovery BiH", "bs": "Kulturno otkriće BiH"}


@pytest.mark.asyncio
async def test_skips_unknown_profile_and_small_pools(db) -> None:
    await _experiences(db)
    db.add(Setting(key="plan.min_experiences", value=5))
    await db.flush()
    queue = make_queue()
    creator = PlanCreator(db, queue=queue, locales=["en"])

    assert await creator.create_for_profile("astronaut") is None
    assert await creator.create_for_profile("family") is None
    assert queue.calls == []


@pytest.mark.asyncio
async def test_create_for_all_profiles_survives_failures(db) -> None:
    old_town, war, _ = await _experiences(db)
    queue = make_queue({
        "plan_creator:family:": _proposal([{"day_number": 1, "theme": "", "experience_ids": [old_town.id, war.id]}]),
        "plan_creator:": RequestError("down"),
    })

    plans = await PlanCreator(db, queue=queue, locales=["en"]).create_for_all_profiles(
        city="Sarajevo", profiles=["family", "couple"]
    )

    assert len(plans) == 1
    assert plans[0].tourist_profile == "family"


@pytest.mark.asyncio
async def test_add_experience_to_plan(db) -> None:
    old_town, war, _ = await _experiences(db)
    plan = Plan(title="Manual", city_name="Sarajevo", duration_days=1, titles={}, notes={}, preferences={})
    db.add(plan)
    await db.flush()
    creator = PlanCreator(db, queue=make_queue(), locales=["en"])

    first = await creator.add_experience_to_plan(plan, old_town, day_number=1)
    second = await creator.add_experience_to_plan(plan, war, day_number=1)
    duplicate = await creator.add_experience_to_plan(plan, old_town, day_number=1)

    assert (first.position, second.position) == (1, 2)
    assert duplicate is None
