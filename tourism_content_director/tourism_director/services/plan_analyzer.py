"""
Plan quality analyzer. User-owned plans are never scored (reported as skipped) and
never enter similarity pairs.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.logging_config import get_logger
from tourism_director.models import Plan, PlanExperience
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
)

logger = get_logger(__name__)

MIN_NOTES_LENGTH = 50
REPORT_WORST = 20
REPORT_DELETABLE = 20
REPORT_SIMILAR = 10

GENERIC_TITLE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"^plan$", r"^tour$", r"^trip$", r"^travel plan$", r"^untitled$", r"^new plan$", r"^test")
)


@dataclass
class PlanSnapshot:
    plan: Plan
    experience_ids: List[int] = field(default_factory=list)

    def text(self, attribute: str, locale: str) -> str:
        return ((getattr(self.plan, attribute) or {}).get(locale) or "").strip()


async def load_plan_snapshots(db: AsyncSession, plan_ids: Optional[Sequence[int]] = None) -> List[PlanSnapshot]:
    q = select(Plan).order_by(Plan.id)
    if plan_ids is not None:
        q = q.where(Plan.id.in_(list(plan_ids)))
    r = await db.execute(q)
    snapshots = {p.id: PlanSnapshot(p) for p in r.scalars().all()}
    if not snapshots:
        return []
    r = await db.execute(
        select(PlanExperience.plan_id, PlanExperience.experience_id)
        .where(PlanExperience.plan_id.in_(list(snapshots)))
        .order_by(PlanExperience.plan_id, PlanExperience.day_number, PlanExperience.position)
    )
    for plan_id, experience_id in r.all():
        snapshots[plan_id].experience_ids.append(experience_id)
    return list(snapshots.values())


class PlanAnalyzer:
    def __init__(self, db: Optional[AsyncSession] = None) -> None:
        self.db = db

    def analyze(self, snapshot: PlanSnapshot) -> Dict[str, Any]:
        plan = snapshot.plan
        if plan.user_id is not None:
            return {
                "plan_id": plan.id,
                "title": plan.title,
                "city": plan.city_name,
                "issues": [],
                "score": 100,
                "needs_rebuild": False,
                "should_delete": False,
                "skipped": True,
                "skip_reason": "User-owned plan",
            }

        issues: List[Dict[str, Any]] = []
        issues += title_issues(plan.title or "", snapshot.text("titles", "bs"), GENERIC_TITLE_PATTERNS)
        issues += self._notes_issues(snapshot)
        for locale in REQUIRED_LOCALES:
            if not snapshot.text("titles", locale):
                severity = SEVERITY_CRITICAL if locale == "en" else SEVERITY_MEDIUM
                issues.append(
                    issue("missing_translation", severity, f"Missing {locale.upper()} title translation", locale=locale)
                )
        if not snapshot.experience_ids:
            issues.append(issue("no_experiences", SEVERITY_CRITICAL, "Plan has no experiences"))
        if not plan.tourist_profile:
            issues.append(issue("missing_profile", SEVERITY_LOW, "Plan has no tourist profile assigned"))

        score = quality_score(issues)
        delete_reasons = self.delete_reasons(snapshot, score)
        should_delete = bool(delete_reasons)
        return {
            "plan_id": plan.id,
            "title": plan.title,
            "city": plan.city_name,
            "profile": plan.tourist_profile,
            "issues": issues,
            "score": score,
            "needs_rebuild": not should_delete and has_blocking_issue(issues),
            "should_delete": should_delete,
            "delete_reason": "; ".join(delete_reasons) if should_delete else None,
            "skipped": False,
        }

    def analyze_all(self, snapshots: Sequence[PlanSnapshot]) -> List[Dict[str, Any]]:
        results = [self.analyze(s) for s in snapshots]
        return sorted((r for r in results if not r["skipped"]), key=lambda r: r["score"])

    def delete_reasons(self, snapshot: PlanSnapshot, score: int) -> List[str]:
        reasons = []
        if not snapshot.experience_ids:
            reasons.append("No experiences assigned")
        if score <= DELETE_THRESHOLD_SCORE:
            reasons.append(f"Quality score too low ({score}/100)")
        if not snapshot.text("titles", "en"):
            reasons.append("Missing English title")
        if is_generic_title(snapshot.plan.title or "", GENERIC_TITLE_PATTERNS):
            has_real_notes = any(len(snapshot.text("notes", locale)) >= MIN_NOTES_LENGTH for locale in REQUIRED_LOCALES)
            if not has_real_notes:
                reasons.append("Generic/placeholder title with no substantial notes")
        return reasons

    def similarity(self, a: PlanSnapshot, b: PlanSnapshot) -> Dict[str, Any]:
        """Weighted: title 0.3, same profile and city +0.4, shared experiences 0.2."""
        title = string_similarity((a.plan.title or "").lower(), (b.plan.title or "").lower())
        same_profile = a.plan.tourist_profile == b.plan.tourist_profile
        same_city = a.plan.city_name == b.plan.city_name
        experiences = id_similarity(a.experience_ids, b.experience_ids)
        overall = title * 0.3 + (0.4 if same_profile and same_city else 0.0) + experiences * 0.2
        return {
            "title": round(title, 3),
            "same_profile": same_profile,
            "same_city": same_city,
            "experiences": round(experiences, 3),
            "overall": round(min(overall, 1.0), 3),
        }

    @staticmethod
    def recommend_action(similarity: Dict[str, Any]) -> str:
        if similarity["same_profile"] and similarity["same_city"]:
            return "delete_duplicate_profile"
        if similarity["experiences"] >= 0.8:
            return "merge_or_delete_duplicate"
        if similarity["title"] >= 0.9:
            return "rename_for_clarity"
        return "review_manually"

    def find_similar(self, snapshots: Sequence[PlanSnapshot]) -> List[Dict[str, Any]]:
        candidates = [s for s in snapshots if s.plan.user_id is None]
        pairs = []
        for i, first in enumerate(candidates):
            for second in candidates[i + 1:]:
                similarity = self.similarity(first, second)
                if similarity["overall"] < SIMILARITY_THRESHOLD:
                    continue
                pairs.append(
                    {
                        "plan_1": self._brief(first),
                        "plan_2": self._brief(second),
                        "similarity": similarity,
                        "recommendation": self.recommend_action(similarity),
                    }
                )
        pairs.sort(key=lambda p: -p["similarity"]["overall"])
        return pairs

    def build_report(self, snapshots: Sequence[PlanSnapshot]) -> Dict[str, Any]:
        results = [r for r in (self.analyze(s) for s in snapshots) if not r["skipped"]]
        similar = self.find_similar(snapshots)
        to_delete = [r for r in results if r["should_delete"]]
        to_rebuild = sorted((r for r in results if r["needs_rebuild"]), key=lambda r: r["score"])
        return {
            "total_plans": len(results),
            "plans_with_issues": sum(1 for r in results if r["issues"]),
            "plans_needing_rebuild": len(to_rebuild),
            "plans_to_delete": len(to_delete),
            "similar_plan_pairs": len(similar),
            "issues_by_severity": count_by_severity(results),
            "issues_by_type": count_by_type(results),
            "worst_plans": to_rebuild[:REPORT_WORST],
            "deletable_plans": to_delete[:REPORT_DELETABLE],
            "similar_plans": similar[:REPORT_SIMILAR],
        }

    async def generate_report(self) -> Dict[str, Any]:
        if self.db is None:
            raise RuntimeError("PlanAnalyzer.generate_report needs a database session")
        report = self.build_report(await load_plan_snapshots(self.db))
        logger.info(
            "plan_analyzer.report",
            total=report["total_plans"],
            with_issues=report["plans_with_issues"],
            to_delete=report["plans_to_delete"],
            similar_pairs=report["similar_plan_pairs"],
        )
        return report

    @staticmethod
    def _brief(snapshot: PlanSnapshot) -> Dict[str, Any]:
        p = snapshot.plan
        return {
            "id": p.id,
            "title": p.title,
            "city": p.city_name,
            "profile": p.tourist_profile,
            "experiences": len(snapshot.experience_ids),
        }

    def _notes_issues(self, snapshot: PlanSnapshot) -> List[Dict[str, Any]]:
        issues = []
        en = snapshot.text("notes", "en")
        if not en:
            issues.append(issue("missing_notes", SEVERITY_MEDIUM, "Missing English travel notes", locale="en"))
        elif len(en) < MIN_NOTES_LENGTH:
            issues.append(
                issue(
                    "short_notes",
                    SEVERITY_LOW,
                    f"English notes too short ({len(en)} chars, min: {MIN_NOTES_LENGTH})",
                    locale="en",
                    current_length=len(en),
                )
            )
        violations = detect_ekavica(snapshot.text("notes", "bs"))
        if violations:
            issues.append(
                issue(
                    "ekavica_violation",
                    SEVERITY_HIGH,
                    "Bosnian notes use ekavica instead of ijekavica",
                    violations=violations[:MAX_VIOLATIONS_REPORTED],
                    locale="bs",
                )
            )
        return issues
