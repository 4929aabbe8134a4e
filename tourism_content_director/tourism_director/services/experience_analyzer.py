"""
Experience quality analyzer: per-experience issues and score, delete decisions,
near-duplicate pairs and an aggregate report for the rebuild job.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.logging_config import get_logger
from tourism_director.models import Experience, ExperienceLocation, Location
from tourism_director.services.quality_checks import (
    DELETE_THRESHOLD_SCORE,
    MAX_VIOLATIONS_REPORTED,
    REQUIRED_LOCALES,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    SIMILARITY_THRESHOLD,
    count_by_severity,
    count_by_type,
    detect_ekavica,
    has_blocking_issue,
    id_similarity,
    is_generic_title,
    issue,
    quality_score,
    string_similarity,
    title_issues,
    truncate,
)

logger = get_logger(__name__)

MIN_DESCRIPTION_LENGTH = 100
REPORT_WORST = 20
REPORT_DELETABLE = 20
REPORT_SIMILAR = 10

ACCOMMODATION_CATEGORY_KEYS = (
    "hotel",
    "hostel",
    "motel",
    "guest_house",
    "apartment",
    "lodging",
    "accommodation",
    "dom_penzionera",
    "retirement_home",
    "nursing_home",
)
ACCOMMODATION_TAGS = frozenset({"hotel", "hostel", "motel", "lodging", "accommodation", "smještaj", "smjestaj"})

GENERIC_TITLE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"^experience$", r"^tour$", r"^city tour$", r"^walking tour$", r"^untitled$", r"^new experience$", r"^test")
)


def is_accommodation(location: Location) -> bool:
    """Hotels, hostels and similar: by type, category key or tag."""
    if location.location_type == "accommodation":
        return True
    for category in location.categories or []:
        key = str(category).lower()
        if any(marker in key for marker in ACCOMMODATION_CATEGORY_KEYS):
            return True
    tags = {str(t).lower() for t in location.tags or []}
    return bool(tags & ACCOMMODATION_TAGS)


@dataclass
class ExperienceSnapshot:
    """Experience with its locations in position order."""

    experience: Experience
    locations: List[Location] = field(default_factory=list)

    @property
    def location_ids(self) -> List[int]:
        return [loc.id for loc in self.locations]

    def text(self, attribute: str, locale: str) -> str:
        return ((getattr(self.experience, attribute) or {}).get(locale) or "").strip()


async def load_experience_snapshots(db: AsyncSession, experience_ids: Optional[Sequence[int]] = None) -> List[ExperienceSnapshot]:
    q = select(Experience).order_by(Experience.id)
    if experience_ids is not None:
        q = q.where(Experience.id.in_(list(experience_ids)))
    r = await db.execute(q)
    snapshots = {e.id: ExperienceSnapshot(e) for e in r.scalars().all()}
    if not snapshots:
        return []
    r = await db.execute(
        select(ExperienceLocation.experience_id, Location)
        .join(Location, Location.id == ExperienceLocation.location_id)
        .where(ExperienceLocation.experience_id.in_(list(snapshots)))
        .order_by(ExperienceLocation.experience_id, ExperienceLocation.position)
    )
    for experience_id, location in r.all():
        snapshots[experience_id].locations.append(location)
    return list(snapshots.values())


class ExperienceAnalyzer:
    """Scores experiences; pure functions over snapshots plus an async report entry point."""

    def __init__(self, db: Optional[AsyncSession] = None) -> None:
        self.db = db

    def analyze(self, snapshot: ExperienceSnapshot) -> Dict[str, Any]:
        experience = snapshot.experience
        issues: List[Dict[str, Any]] = []
        issues += self._description_issues(snapshot)
        issues += title_issues(experience.title or "", snapshot.text("titles", "bs"), GENERIC_TITLE_PATTERNS)
        issues += self._translation_issues(snapshot)
        issues += self._location_issues(snapshot)
        issues += self._accommodation_issues(snapshot)
        if not experience.category_key:
            issues.append(issue("missing_category", SEVERITY_LOW, "Experience has no category assigned"))
        if experience.estimated_duration is None:
            issues.append(issue("missing_duration", SEVERITY_LOW, "Experience has no estimated duration"))
        elif experience.estimated_duration <= 0:
            issues.append(
                issue("invalid_duration", SEVERITY_MEDIUM, f"Experience has invalid duration: {experience.estimated_duration}")
            )

        score = quality_score(issues)
        delete_reasons = self.delete_reasons(snapshot, score)
        should_delete = bool(delete_reasons)
        return {
            "experience_id": experience.id,
            "title": experience.title,
            "city": experience.city,
            "user_id": experience.user_id,
            "issues": issues,
            "score": score,
            "needs_rebuild": not should_delete and has_blocking_issue(issues),
            "should_delete": should_delete,
            "delete_reason": "; ".join(delete_reasons) if should_delete else None,
        }

    def analyze_all(self, snapshots: Sequence[ExperienceSnapshot]) -> List[Dict[str, Any]]:
        """Results with at least one issue, worst first."""
        results = [self.analyze(s) for s in snapshots]
        return sorted((r for r in results if r["issues"]), key=lambda r: r["score"])

    def delete_reasons(self, snapshot: ExperienceSnapshot, score: int) -> List[str]:
        reasons = []
        if not snapshot.locations:
            reasons.append("No locations attached")
        if score <= DELETE_THRESHOLD_SCORE:
            reasons.append(f"Quality score too low ({score}/100)")
        if not snapshot.text("titles", "en") and not snapshot.text("descriptions", "en"):
            reasons.append("Missing all English content")
        if is_generic_title(snapshot.experience.title or "", GENERIC_TITLE_PATTERNS):
            has_real_content = any(
                len(snapshot.text("descriptions", locale)) >= MIN_DESCRIPTION_LENGTH for locale in REQUIRED_LOCALES
            )
            if not has_real_content:
                reasons.append("Generic/placeholder title with no substantial content")
        return reasons

    def similarity(self, a: ExperienceSnapshot, b: ExperienceSnapshot) -> Dict[str, Any]:
        """Weighted: title 0.3, shared locations 0.5, description 0.1, same city +0.1."""
        title = string_similarity((a.experience.title or "").lower(), (b.experience.title or "").lower())
        locations = id_similarity(a.location_ids, b.location_ids)
        description = string_similarity(
            truncate(a.text("descriptions", "en").lower()),
            truncate(b.text("descriptions", "en").lower()),
        )
        same_city = a.experience.city == b.experience.city
        overall = title * 0.3 + locations * 0.5 + description * 0.1 + (0.1 if same_city else 0.0)
        return {
            "title": round(title, 3),
            "locations": round(locations, 3),
            "description": round(description, 3),
            "same_city": same_city,
            "overall": round(min(overall, 1.0), 3),
        }

    @staticmethod
    def recommend_action(similarity: Dict[str, Any]) -> str:
        if similarity["locations"] >= 0.8:
            return "merge_or_delete_duplicate"
        if similarity["locations"] >= 0.6:
            return "review_for_differentiation"
        if similarity["title"] >= 0.9:
            return "rename_for_clarity"
        return "review_manually"

    def find_similar(self, snapshots: Sequence[ExperienceSnapshot]) -> List[Dict[str, Any]]:
        pairs = []
        for i, first in enumerate(snapshots):
            for second in snapshots[i + 1:]:
                similarity = self.similarity(first, second)
                if similarity["overall"] < SIMILARITY_THRESHOLD:
                    continue
                pairs.append(
                    {
                        "experience_1": self._brief(first),
                        "experience_2": self._brief(second),
                        "similarity": similarity,
                        "recommendation": self.recommend_action(similarity),
                    }
                )
        pairs.sort(key=lambda p: -p["similarity"]["overall"])
        return pairs

    def build_report(self, snapshots: Sequence[ExperienceSnapshot]) -> Dict[str, Any]:
        results = [self.analyze(s) for s in snapshots]
        similar = self.find_similar(snapshots)
        to_delete = [r for r in results if r["should_delete"]]
        to_rebuild = sorted((r for r in results if r["needs_rebuild"]), key=lambda r: r["score"])
        return {
            "total_experiences": len(results),
            "experiences_with_issues": sum(1 for r in results if r["issues"]),
            "experiences_needing_rebuild": len(to_rebuild),
            "experiences_to_delete": len(to_delete),
            "similar_experience_pairs": len(similar),
            "issues_by_severity": count_by_severity(results),
            "issues_by_type": count_by_type(results),
            "worst_experiences": to_rebuild[:REPORT_WORST],
            "deletable_experiences": to_delete[:REPORT_DELETABLE],
            "similar_experiences": similar[:REPORT_SIMILAR],
        }

    async def generate_report(self) -> Dict[str, Any]:
        if self.db is None:
            raise RuntimeError("ExperienceAnalyzer.generate_report needs a database session")
        snapshots = await load_experience_snapshots(self.db)
        report = self.build_report(snapshots)
        logger.info(
            "experience_analyzer.report",
            total=report["total_experiences"],
            with_issues=report["experiences_with_issues"],
            to_delete=report["experiences_to_delete"],
            similar_pairs=report["similar_experience_pairs"],
        )
        return report

    @staticmethod
    def _brief(snapshot: ExperienceSnapshot) -> Dict[str, Any]:
        e = snapshot.experience
        return {"id": e.id, "title": e.title, "city": e.city, "locations": len(snapshot.locations)}

    def _description_issues(self, snapshot: ExperienceSnapshot) -> List[Dict[str, Any]]:
        issues = []
        en = snapshot.text("descriptions", "en")
        if not en:
            issues.append(issue("missing_description", SEVERITY_CRITICAL, "Missing English description", locale="en"))
        elif len(en) < MIN_DESCRIPTION_LENGTH:
            issues.append(
                issue(
                    "short_description",
                    SEVERITY_HIGH,
                    f"English description too short ({len(en)} chars, min: {MIN_DESCRIPTION_LENGTH})",
                    locale="en",
                    current_length=len(en),
                )
            )
        violations = detect_ekavica(snapshot.text("descriptions", "bs"))
        if violations:
            issues.append(
                issue(
                    "ekavica_violation",
                    SEVERITY_HIGH,
                    "Bosnian description uses ekavica instead of ijekavica",
                    violations=violations[:MAX_VIOLATIONS_REPORTED],
                    locale="bs",
                )
            )
        return issues

    def _translation_issues(self, snapshot: ExperienceSnapshot) -> List[Dict[str, Any]]:
        issues = []
        for locale in REQUIRED_LOCALES:
            title = snapshot.text("titles", locale)
            description = snapshot.text("descriptions", locale)
            english = locale == "en"
            if not title and not description:
                message = f"Missing {locale.upper()} translation (title and description)"
                severity = SEVERITY_CRITICAL if english else SEVERITY_MEDIUM
            elif not title:
                message = f"Missing {locale.upper()} title translation"
                severity = SEVERITY_CRITICAL if english else SEVERITY_MEDIUM
            elif not description:
                message = f"Missing {locale.upper()} description translation"
                severity = SEVERITY_HIGH if english else SEVERITY_MEDIUM
            else:
                continue
            issues.append(issue("missing_translation", severity, message, locale=locale))
        return issues

    def _location_issues(self, snapshot: ExperienceSnapshot) -> List[Dict[str, Any]]:
        if not snapshot.locations:
            return [issue("no_locations", SEVERITY_CRITICAL, "Experience has no locations")]
        return []

    def _accommodation_issues(self, snapshot: ExperienceSnapshot) -> List[Dict[str, Any]]:
        total = len(snapshot.locations)
        if total == 0:
            return []
        accommodations = [loc for loc in snapshot.locations if is_accommodation(loc)]
        count = len(accommodations)
        ratio = count / total
        details = {
            "location_ids": [loc.id for loc in accommodations],
            "location_names": [loc.name for loc in accommodations],
        }
        if ratio > 0.5 and count > 1:
            return [
                issue(
                    "too_many_accommodation_locations",
                    SEVERITY_HIGH,
                    f"Experience has too many accommodation locations ({count}/{total} = {round(ratio * 100)}%)",
                    accommodation_ratio=round(ratio, 2),
                    **details,
                )
            ]
        if total == 1 and count == 1:
            return [
                issue(
                    "only_accommodation_location",
                    SEVERITY_MEDIUM,
                    f"Experience only contains accommodation location '{accommodations[0].name}'",
                    **details,
                )
            ]
        return []
