"""
Quality analyzers:
- shared checks: ekavica detection, similarity measures, score floor.
- experiences: clean one scores 100; placeholder one is deletable; accommodation ratio issues.
- experience similarity pairs and recommendations.
- plans: user-owned skipped and never paired; duplicate profile/city pairs; report from the database.
"""
import pytest

from conftest import add_experience, add_location, add_plan
from tourism_director.models import Experience, Location, Plan
from tourism_director.services.experience_analyzer import (
    ExperienceAnalyzer,
    ExperienceSnapshot,
    is_accommodation,
)
from tourism_director.services.plan_analyzer import PlanAnalyzer, PlanSnapshot
from tourism_director.services.quality_checks import (
    detect_ekavica,
    id_similarity,
    quality_score,
    string_similarity,
)

LONG_EN = (
    "Walk through the Ottoman heart of Sarajevo, from the copper workshops of the bazaar "
    "to the courtyard of the Gazi Husrev-beg Mosque and the wooden Sebilj fountain."
)
LONG_BS = "Prošetajte osmanskim srcem Sarajeva, od bakrenih radionica do lijepog dvorišta džamije."


def _location(location_id: int, name: str, location_type: str = "place", **fields) -> Location:
    return Location(
        id=location_id,
        name=name,
        city="Sarajevo",
        lat=43.85,
        lng=18.41,
        location_type=location_type,
        categories=fields.pop("categories", ["tourism.sights"]),
        tags=fields.pop("tags", []),
        **fields,
    )


def _experience(experience_id: int, title: str, **fields) -> Experience:
    return Experience(
        id=experience_id,
        title=title,
        city=fields.pop("city", "Sarajevo"),
        category_key=fields.pop("category_key", "history"),
        estimated_duration=fields.pop("estimated_duration", 120),
        titles=fields.pop("titles", {"en": title, "bs": f"{title} (bs)"}),
        descriptions=fields.pop("descriptions", {"en": LONG_EN, "bs": LONG_BS}),
        **fields,
    )


def _plan(plan_id: int, title: str, profile: str = "family", **fields) -> Plan:
    return Plan(
        id=plan_id,
        title=title,
        city_name=fields.pop("city_name", "Sarajevo"),
        titles=fields.pop("titles", {"en": title, "bs": title}),
        notes=fields.pop("notes", {"en": LONG_EN, "bs": LONG_BS}),
        preferences={"tourist_profile": profile, "generated_by_ai": True},
        **fields,
    )


def test_shared_checks() -> None:
    assert detect_ekavica("Ovo je lepo mesto za videti") == [
        {"found": "lepo", "should_be": "lijepo"},
        {"found": "mesto", "should_be": "mjesto"},
        {"found": "videti", "should_be": "vidjeti"},
    ]
    assert detect_ekavica("Lijepo mjesto") == []
    assert string_similarity("old town walk", "old town walk") == 1.0
    assert string_similarity("old town", "new bridge") == 0.0
    assert id_similarity([1, 2, 3], [2, 3, 4]) == 0.5
    assert id_similarity([], [1]) == 0.0
    assert quality_score([{"severity": "critical"}] * 4) == 0


def test_clean_experience_scores_100() -> None:
    snapshot = ExperienceSnapshot(
        _experience(1, "Ottoman Heritage of Sarajevo"),
        [_location(1, "Baščaršija"), _location(2, "Sebilj")],
    )

    result = ExperienceAnalyzer().analyze(snapshot)

    assert result["issues"] == []
    assert result["score"] == 100
    assert result["needs_rebuild"] is False
    assert result["should_delete"] is False


def test_placeholder_experience_is_deletable() -> None:
    experience = _experience(
        2, "Tour", titles={"en": "Tour"}, descriptions={}, category_key=None, estimated_duration=None
    )

    result = ExperienceAnalyzer().analyze(ExperienceSnapshot(experience, []))

    types = [i["type"] for i in result["issues"]]
    assert "missing_description" in types
    assert "short_title" in types
    assert "no_locations" in types
    assert result["score"] == 0
    assert result["should_delete"] is True
    assert result["needs_rebuild"] is False
    assert "No locations attached" in result["delete_reason"]
    assert "Generic/placeholder title" in result["delete_reason"]


def test_ekavica_description_needs_rebuild() -> None:
    experience = _experience(3, "Bridges of Mostar", descriptions={"en": LONG_EN, "bs": "Ovo je lepo mesto."})

    result = ExperienceAnalyzer().analyze(ExperienceSnapshot(experience, [_location(1, "Stari most")]))

    assert [i["type"] for i in result["issues"]] == ["ekavica_violation"]
    assert result["score"] == 80
    assert result["needs_rebuild"] is True


def test_accommodation_issues() -> None:
    analyzer = ExperienceAnalyzer()
    hotel = _location(10, "Hotel Europe", location_type="accommodation")
    hostel = _location(11, "Hostel Ljubičica", categories=["accommodation.hostel"])
    museum = _location(12, "Zemaljski muzej", categories=["entertainment.museum"])

    crowded = analyzer.analyze(ExperienceSnapshot(_experience(4, "Where to Sleep"), [hotel, hostel, museum]))
    only_one = analyzer.analyze(ExperienceSnapshot(_experience(5, "Grand Hotel Stay"), [hotel]))

    assert crowded["issues"][0]["type"] == "too_many_accommodation_locations"
    assert crowded["issues"][0]["location_ids"] == [10, 11]
    assert only_one["issues"][0]["type"] == "only_accommodation_location"
    assert is_accommodation(_location(13, "Motel", tags=["Smještaj"]))
    assert not is_accommodation(museum)


def test_similar_experiences() -> None:
    locations = [_location(1, "A"), _location(2, "B"), _location(3, "C")]
    first = ExperienceSnapshot(_experience(1, "Old Town Walk"), locations)
    twin = ExperienceSnapshot(_experience(2, "Old Town Walk"), list(locations))
    other = ExperienceSnapshot(
        _experience(3, "Una River Rafting", city="Bihać", descriptions={"en": "Rafting.", "bs": ""}),
        [_location(9, "Una")],
    )
    analyzer = ExperienceAnalyzer()

    pairs = analyzer.find_similar([first, twin, other])

    assert len(pairs) == 1
    assert pairs[0]["similarity"]["overall"] == 1.0
    assert pairs[0]["recommendation"] == "merge_or_delete_duplicate"
    assert (pairs[0]["experience_1"]["id"], pairs[0]["experience_2"]["id"]) == (1, 2)
    assert analyzer.recommend_action({"locations": 0.6, "title": 0.0}) == "review_for_differentiation"
    assert analyzer.recommend_action({"locations": 0.0, "title": 0.95}) == "rename_for_clarity"


def test_user_plans_skipped_and_never_paired() -> None:
    analyzer = PlanAnalyzer()
    ai_plan = PlanSnapshot(_plan(1, "Family Adventure - Sarajevo"), [1, 2])
    twin = PlanSnapshot(_plan(2, "Family Adventure - Sarajevo"), [1, 2])
    user_plan = PlanSnapshot(_plan(3, "Family Adventure - Sarajevo", user_id=42), [1, 2])

    assert analyzer.analyze(user_plan)["skipped"] is True
    assert [r["plan_id"] for r in analyzer.analyze_all([ai_plan, user_plan])] == [1]

    pairs = analyzer.find_similar([ai_plan, twin, user_plan])
    assert len(pairs) == 1
    assert pairs[0]["recommendation"] == "delete_duplicate_profile"
    assert pairs[0]["similarity"]["overall"] == pytest.approx(0.9)


def test_plan_without_experiences_is_deletable() -> None:
    result = PlanAnalyzer().analyze(PlanSnapshot(_plan(4, "Trip", notes={}, titles={"en": "Trip"}), []))

    assert result["should_delete"] is True
    assert "No experiences assigned" in result["delete_reason"]
    assert "Generic/placeholder title with no substantial notes" in result["delete_reason"]


@pytest.mark.asyncio
async def test_reports_from_database(db) -> None:
    old_town = await add_location(db, "Baščaršija")
    walk = await add_experience(db, "Old Town Walk", [old_town], category_key="history", estimated_duration=60)
    empty = await add_experience(db, "Experience", [])
    await add_plan(db, "Family Adventure - Sarajevo", [walk])
    await add_plan(db, "Mine", [walk], user_id=7)

    experience_report = await ExperienceAnalyzer(db).generate_report()
    plan_report = await PlanAnalyzer(db).generate_report()

    assert experience_report["total_experiences"] == 2
    assert [r["experience_id"] for r in experience_report["deletable_experiences"]] == [empty.id]
    assert experience_report["issues_by_severity"]["critical"] >= 1
    assert plan_report["total_plans"] == 1
    assert plan_report["similar_plan_pairs"] == 0
