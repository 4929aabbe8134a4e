"""
Rebuild job for experiences: deletes unsalvageable ones, regenerates the worst,
differentiates or removes near-duplicates and trims excess accommodation locations.
"""
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.exceptions import RequestError
from tourism_director.jobs.rebuild_common import (
    RebuildJob,
    issue_lines,
    merged_translations,
    pair_label,
    rebuild_limit_reached,
)
from tourism_director.logging_config import get_logger
from tourism_director.models import Experience, ExperienceLocation, Plan, PlanExperience
from tourism_director.schemas.llm_outputs import experience_regeneration_model, localized_dict
from tourism_director.services.experience_analyzer import (
    ExperienceAnalyzer,
    ExperienceSnapshot,
    is_accommodation,
    load_experience_snapshots,
)
from tourism_director.services.experience_creator import IJEKAVICA_RULES
from tourism_director.services.quality_checks import truncate

logger = get_logger(__name__)

CONTENT_ISSUES = frozenset({"missing_description", "short_description", "ekavica_violation", "missing_translation"})
DIFFERENTIATE_ACTIONS = ("review_for_differentiation", "rename_for_clarity")
DUPLICATE_ACTION = "merge_or_delete_duplicate"
MAX_ACCOMMODATION_RATIO = 0.5


def accommodations_to_remove(location_flags: Sequence[Tuple[int, bool]]) -> List[int]:
    """
    Location ids to unlink from one experience, given (location_id, is_accommodation) in
    position order. Only experiences over 50% accommodation (or a lone accommodation)
    qualify; the first accommodations are kept, at least one.
    """
    total = len(location_flags)
    accommodation_ids = [location_id for location_id, flag in location_flags if flag]
    count = len(accommodation_ids)
    if total == 0 or count == 0:
        return []
    if not (count / total > MAX_ACCOMMODATION_RATIO or (total == 1 and count == 1)):
        return []
    others = total - count
    keep = 1 if others == 0 else max(1, int(others * MAX_ACCOMMODATION_RATIO))
    return accommodation_ids[keep:]


class RebuildExperiencesJob(RebuildJob):
    NAMESPACE = "rebuild_experiences"
    MODES = ("all", "quality", "similar", "accommodations")

    def initial_results(self) -> Dict[str, Any]:
        return {
            "total_analyzed": 0,
            "issues_found": 0,
            "similar_pairs_found": 0,
            "experiences_to_delete_count": 0,
            "experiences_rebuilt": 0,
            "experiences_deleted": 0,
            "accommodation_locations_removed": 0,
            "analysis_report": None,
        }

    async def analyze(self, db: AsyncSession) -> Dict[str, Any]:
        return await ExperienceAnalyzer(db).generate_report()

    def record_report(self, results: Dict[str, Any], report: Dict[str, Any]) -> None:
        results["total_analyzed"] = report["total_experiences"]
        results["issues_found"] = report["experiences_with_issues"]
        results["similar_pairs_found"] = report["similar_experience_pairs"]
        results["experiences_to_delete_count"] = report["experiences_to_delete"]
        results["analysis_report"] = report

    def analysis_message(self, report: Dict[str, Any]) -> str:
        return (
            f"Found {report['experiences_with_issues']} experiences with issues, "
            f"{report['similar_experience_pairs']} similar pairs, {report['experiences_to_delete']} to delete"
        )

    def completion_message(self, results: Dict[str, Any]) -> str:
        return (
            f"Completed: {results['experiences_rebuilt']} rebuilt, {results['experiences_deleted']} deleted, "
            f"{results['accommodation_locations_removed']} accommodation locations removed, "
            f"{len(results['errors'])} errors"
        )

    async def run_phases(
        self,
        db: AsyncSession,
        report: Dict[str, Any],
        mode: str,
        max_rebuilds: Optional[int],
        delete_similar: bool,
        results: Dict[str, Any],
    ) -> None:
        deleted: Set[int] = set()

        deletable = report["deletable_experiences"]
        if deletable:
            await self.progress(db, f"Deleting {len(deletable)} unsalvageable experiences...")
        for item in deletable:
            entry = {"experience_id": item["experience_id"], "title": item["title"], "action": "delete"}
            if await self.attempt(db, results, entry, lambda: self.delete_experience(db, item["experience_id"])):
                deleted.add(item["experience_id"])
                results["experiences_deleted"] += 1

        rebuilt = 0
        if mode in ("all", "quality"):
            for item in report["worst_experiences"]:
                if rebuild_limit_reached(rebuilt, max_rebuilds):
                    break
                if item["experience_id"] in deleted:
                    continue
                await self.progress(db, f"Rebuilding experience {item['title']}...")
                entry = {"experience_id": item["experience_id"], "title": item["title"], "action": "rebuild"}
                if await self.attempt(
                    db, results, entry, lambda: self.rebuild_experience(db, item["experience_id"], item["issues"])
                ):
                    rebuilt += 1
                    results["experiences_rebuilt"] += 1

        if mode in ("all", "similar"):
            for pair in report["similar_experiences"]:
                if rebuild_limit_reached(rebuilt, max_rebuilds):
                    break
                first, second = pair["experience_1"], pair["experience_2"]
                if first["id"] in deleted or second["id"] in deleted:
                    continue
                entry = {"pair": pair_label(first, second)}
                recommendation = pair["recommendation"]
                if recommendation == DUPLICATE_ACTION and delete_similar:
                    await self.progress(db, "Removing duplicate experience...")
                    removed = await self.attempt(db, results, entry, lambda: self.delete_worse_experience(db, pair))
                    if removed:
                        deleted.add(removed)
                        results["experiences_deleted"] += 1
                elif recommendation == DUPLICATE_ACTION or recommendation in DIFFERENTIATE_ACTIONS:
                    await self.progress(db, "Differentiating similar experience...")
                    if await self.attempt(db, results, entry, lambda: self.differentiate_experience(db, pair)):
                        rebuilt += 1
                        results["experiences_rebuilt"] += 1

        if mode in ("all", "accommodations"):
            await self.progress(db, "Removing accommodation locations from experiences...")
            results["accommodation_locations_removed"] = await self.remove_excess_accommodations(db, results, deleted)

    # --- mutations ------------------------------------------------------------

    async def delete_experience(self, db: AsyncSession, experience_id: int) -> bool:
        """Delete an AI experience with its links. No-op for user-owned or user-planned ones."""
        experience = await db.get(Experience, experience_id)
        if experience is None or experience.user_id is not None:
            return False
        if await self._in_user_plan(db, experience_id):
            logger.info("rebuild_experiences.delete_skipped", experience_id=experience_id, reason="used_by_user_plan")
            return False
        await db.execute(delete(PlanExperience).where(PlanExperience.experience_id == experience_id))
        await db.execute(delete(ExperienceLocation).where(ExperienceLocation.experience_id == experience_id))
        await db.delete(experience)
        await db.flush()
        logger.info("rebuild_experiences.deleted", experience_id=experience_id)
        return True

    async def rebuild_experience(self, db: AsyncSession, experience_id: int, issues: Sequence[Dict[str, Any]]) -> bool:
        """
        Regenerate texts when the issues call for it. True only when new texts were saved;
        False when missing, user-owned, empty, nothing to fix or the LLM call failed.
        """
        snapshot = await self._snapshot(db, experience_id)
        if snapshot is None or snapshot.experience.user_id is not None or not snapshot.locations:
            return False
        if not any(i.get("type") in CONTENT_ISSUES for i in issues):
            return False
        return await self.regenerate_content(
            db,
            snapshot,
            self._regeneration_prompt(snapshot, issues),
            f"rebuild_experiences:{experience_id}",
        )

    async def differentiate_experience(self, db: AsyncSession, pair: Dict[str, Any]) -> bool:
        """Rewrite the smaller of two near-duplicates (ties: the first) so it reads distinctly."""
        first = await self._snapshot(db, pair["experience_1"]["id"])
        second = await self._snapshot(db, pair["experience_2"]["id"])
        if first is None or second is None:
            return False
        target, other = (first, second) if len(first.locations) <= len(second.locations) else (second, first)
        if target.experience.user_id is not None:
            return False
        logger.info("rebuild_experiences.differentiating", experience_id=target.experience.id, other_id=other.experience.id)
        return await self.regenerate_content(
            db,
            target,
            self._differentiation_prompt(target, other),
            f"rebuild_experiences:differentiate:{target.experience.id}",
        )

    async def delete_worse_experience(self, db: AsyncSession, pair: Dict[str, Any]) -> Optional[int]:
        """
        Delete the duplicate with fewer locations; on a tie the newer one (else the second).
        Returns the deleted id, None when nothing was deleted.
        """
        first = await self._snapshot(db, pair["experience_1"]["id"])
        second = await self._snapshot(db, pair["experience_2"]["id"])
        if first is None or second is None:
            return None
        if len(first.locations) < len(second.locations):
            victim = first
        elif len(second.locations) < len(first.locations):
            victim = second
        elif _newer(first.experience, second.experience):
            victim = first
        else:
            victim = second
        experience_id = victim.experience.id
        if await self.delete_experience(db, experience_id):
            return experience_id
        return None

    async def remove_excess_accommodations(self, db: AsyncSession, results: Dict[str, Any], skip_ids: Set[int]) -> int:
        snapshots = await load_experience_snapshots(db)
        removals = []
        for snapshot in snapshots:
            experience = snapshot.experience
            if experience.id in skip_ids or experience.user_id is not None:
                continue
            location_ids = accommodations_to_remove([(loc.id, is_accommodation(loc)) for loc in snapshot.locations])
            if location_ids:
                removals.append((experience.id, experience.title, location_ids))

        removed = 0
        for experience_id, title, location_ids in removals:
            entry = {"experience_id": experience_id, "title": title, "action": "remove_accommodations"}
            count = await self.attempt(
                db, results, entry, lambda: self.unlink_locations(db, experience_id, location_ids)
            )
            removed += count or 0
        logger.info("rebuild_experiences.accommodations_removed", removed=removed, experiences=len(removals))
        return removed

    async def unlink_locations(self, db: AsyncSession, experience_id: int, location_ids: Sequence[int]) -> int:
        experience = await db.get(Experience, experience_id)
        if experience is None or experience.user_id is not None:
            return 0
        r = await db.execute(
            delete(ExperienceLocation).where(
                ExperienceLocation.experience_id == experience_id,
                ExperienceLocation.location_id.in_(list(location_ids)),
            )
        )
        return r.rowcount or 0

    async def regenerate_content(self, db: AsyncSession, snapshot: ExperienceSnapshot, prompt: str, context: str) -> bool:
        try:
            result = await self.queue.request(prompt, schema=experience_regeneration_model(self.locales), context=context)
        except RequestError as e:
            logger.warning("rebuild_experiences.regeneration_failed", experience_id=snapshot.experience.id, error=str(e))
            return False

        experience = snapshot.experience
        titles = localized_dict(result.titles)
        descriptions = localized_dict(result.descriptions)
        if not titles and not descriptions:
            logger.warning("rebuild_experiences.empty_regeneration", experience_id=experience.id)
            return False
        experience.titles = merged_translations(experience.titles, titles)
        experience.descriptions = merged_translations(experience.descriptions, descriptions)
        experience.title = (experience.titles.get("en") or experience.title)[:255]
        if result.estimated_duration and result.estimated_duration > 0:
            experience.estimated_duration = result.estimated_duration
        await db.flush()
        logger.info("rebuild_experiences.regenerated", experience_id=experience.id)
        return True

    # --- helpers --------------------------------------------------------------

    @staticmethod
    async def _snapshot(db: AsyncSession, experience_id: int) -> Optional[ExperienceSnapshot]:
        snapshots = await load_experience_snapshots(db, [experience_id])
        return snapshots[0] if snapshots else None

    @staticmethod
    async def _in_user_plan(db: AsyncSession, experience_id: int) -> bool:
        r = await db.execute(
            select(PlanExperience.id)
            .join(Plan, Plan.id == PlanExperience.plan_id)
            .where(PlanExperience.experience_id == experience_id, Plan.user_id.isnot(None))
            .limit(1)
        )
        return r.first() is not None

    def _regeneration_prompt(self, snapshot: ExperienceSnapshot, issues: Sequence[Dict[str, Any]]) -> str:
        experience = snapshot.experience
        locations = "\n".join(
            f"- {loc.name} ({loc.city}): {truncate((loc.descriptions or {}).get('en') or '', 100)}"
            for loc in snapshot.locations
        )
        return (
            "TASK: Regenerate content for an existing tourism experience that has quality issues.\n\n"
            f"CURRENT EXPERIENCE:\nTitle: {experience.title}\nCity: {experience.city or 'unknown'}\n"
            f"Current description: {truncate(snapshot.text('descriptions', 'en'), 300)}\n\n"
            f"LOCATIONS IN THIS EXPERIENCE:\n{locations}\n\n"
            f"QUALITY ISSUES TO FIX:\n{issue_lines(issues)}\n\n"
            "Write new, specific titles (never generic) and 100-200 word descriptions for every language, "
            "with authentic local cultural references.\n"
            f"{IJEKAVICA_RULES}\n"
            f"Languages: {', '.join(self.locales)}"
        )

    def _differentiation_prompt(self, target: ExperienceSnapshot, other: ExperienceSnapshot) -> str:
        def block(s: ExperienceSnapshot) -> str:
            return (
                f"Title: {s.experience.title}\nCity: {s.experience.city or 'unknown'}\n"
                f"Description: {truncate(s.text('descriptions', 'en'), 300)}\n"
                f"Locations: {', '.join(loc.name for loc in s.locations)}"
            )

        return (
            "TASK: Create new, differentiated content for an experience that is too similar to another.\n\n"
            f"EXPERIENCE TO MODIFY:\n{block(target)}\n\n"
            f"SIMILAR EXPERIENCE (differentiate from this one):\n{block(other)}\n\n"
            "Give it a unique title and focus on different aspects or perspectives. Where locations overlap, "
            "stress what is unique about this experience. Descriptions of 100-200 words.\n"
            f"{IJEKAVICA_RULES}\n"
            f"Languages: {', '.join(self.locales)}"
        )


def _newer(first: Experience, second: Experience) -> bool:
    if first.created_at is None or second.created_at is None:
        return False
    return first.created_at > second.created_at
