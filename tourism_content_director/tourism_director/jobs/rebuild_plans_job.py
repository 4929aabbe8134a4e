"""
Rebuild job for AI plans. User-owned plans are never touched: every mutation re-reads
the plan and returns False when it has an owner.

Plans scoring below EXPERIENCE_REBUILD_THRESHOLD first get an experience replacement
pass (same-city alternatives, day and position preserved), then titles / notes are
regenerated when the issues call for it.
"""
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.exceptions import RequestError, UnknownProfileError
from tourism_director.jobs.rebuild_common import (
    RebuildJob,
    issue_lines,
    merged_translations,
    pair_label,
    rebuild_limit_reached,
)
from tourism_director.logging_config import get_logger
from tourism_director.models import Experience, ExperienceLocation, Location, Plan, PlanExperience
from tourism_director.schemas.llm_outputs import ExperienceReplacementDecision, localized_dict, plan_regeneration_model
from tourism_director.services.catalog import TouristProfile
from tourism_director.services.experience_creator import IJEKAVICA_RULES
from tourism_director.services.plan_analyzer import PlanAnalyzer

logger = get_logger(__name__)

EXPERIENCE_REBUILD_THRESHOLD = 50
CONTENT_ISSUES = frozenset(
    {"missing_title", "short_title", "ekavica_violation", "missing_translation", "missing_notes", "short_notes"}
)
DUPLICATE_ACTIONS = ("delete_duplicate_profile", "merge_or_delete_duplicate")
RENAME_ACTION = "rename_for_clarity"


def max_replacements(current_count: int) -> int:
    """At most half of a plan's experiences are swapped, at least one."""
    return max(1, current_count // 2)


def profile_description(profile: Optional[str]) -> str:
    try:
        traits = TouristProfile.parse(profile or "").traits
    except UnknownProfileError:
        return "General interest traveller, balanced mix of activities"
    return f"{traits.description}. Pace: {traits.pace}. Budget: {traits.budget}."


class RebuildPlansJob(RebuildJob):
    NAMESPACE = "rebuild_plans"
    MODES = ("all", "quality", "similar")

    def initial_results(self) -> Dict[str, Any]:
        return {
            "total_analyzed": 0,
            "issues_found": 0,
            "similar_pairs_found": 0,
            "plans_to_delete_count": 0,
            "plans_rebuilt": 0,
            "plans_deleted": 0,
            "analysis_report": None,
        }

    async def analyze(self, db: AsyncSession) -> Dict[str, Any]:
        return await PlanAnalyzer(db).generate_report()

    def record_report(self, results: Dict[str, Any], report: Dict[str, Any]) -> None:
        results["total_analyzed"] = report["total_plans"]
        results["issues_found"] = report["plans_with_issues"]
        results["similar_pairs_found"] = report["similar_plan_pairs"]
        results["plans_to_delete_count"] = report["plans_to_delete"]
        results["analysis_report"] = report

    def analysis_message(self, report: Dict[str, Any]) -> str:
        return (
            f"Found {report['plans_with_issues']} plans with issues, "
            f"{report['similar_plan_pairs']} similar pairs, {report['plans_to_delete']} to delete"
        )

    def completion_message(self, results: Dict[str, Any]) -> str:
        return (
            f"Completed: {results['plans_rebuilt']} rebuilt, {results['plans_deleted']} deleted, "
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

        deletable = report["deletable_plans"]
        if deletable:
            await self.progress(db, f"Deleting {len(deletable)} unsalvageable plans...")
        for item in deletable:
            entry = {"plan_id": item["plan_id"], "title": item["title"], "action": "delete"}
            if await self.attempt(db, results, entry, lambda: self.delete_plan(db, item["plan_id"])):
                deleted.add(item["plan_id"])
                results["plans_deleted"] += 1

        rebuilt = 0
        if mode in ("all", "quality"):
            for item in report["worst_plans"]:
                if rebuild_limit_reached(rebuilt, max_rebuilds):
                    break
                if item["plan_id"] in deleted:
                    continue
                await self.progress(db, f"Rebuilding plan {item['title']}...")
                entry = {"plan_id": item["plan_id"], "title": item["title"], "action": "rebuild"}
                if await self.attempt(
                    db, results, entry, lambda: self.rebuild_plan(db, item["plan_id"], item["issues"], item["score"])
                ):
                    rebuilt += 1
                    results["plans_rebuilt"] += 1

        if mode in ("all", "similar"):
            for pair in report["similar_plans"]:
                if rebuild_limit_reached(rebuilt, max_rebuilds):
                    break
                first, second = pair["plan_1"], pair["plan_2"]
                if first["id"] in deleted or second["id"] in deleted:
                    continue
                entry = {"pair": pair_label(first, second)}
                recommendation = pair["recommendation"]
                if recommendation in DUPLICATE_ACTIONS and delete_similar:
                    await self.progress(db, "Removing duplicate plan...")
                    removed = await self.attempt(db, results, entry, lambda: self.delete_worse_plan(db, pair))
                    if removed:
                        deleted.add(removed)
                        results["plans_deleted"] += 1
                elif recommendation in DUPLICATE_ACTIONS or recommendation == RENAME_ACTION:
                    await self.progress(db, "Differentiating similar plan...")
                    if await self.attempt(db, results, entry, lambda: self.differentiate_plan(db, pair)):
                        rebuilt += 1
                        results["plans_rebuilt"] += 1

    # --- mutations ------------------------------------------------------------

    async def delete_plan(self, db: AsyncSession, plan_id: int) -> bool:
        plan = await db.get(Plan, plan_id)
        if plan is None or plan.user_id is not None:
            return False
        await db.execute(delete(PlanExperience).where(PlanExperience.plan_id == plan_id))
        await db.delete(plan)
        await db.flush()
        logger.info("rebuild_plans.deleted", plan_id=plan_id)
        return True

    async def rebuild_plan(
        self,
        db: AsyncSession,
        plan_id: int,
        issues: Sequence[Dict[str, Any]],
        score: int = 100,
    ) -> bool:
        """
        True when experiences were swapped or new texts saved. False when the plan is missing,
        user-owned, has no experiences, or nothing changed (a failed LLM call included).
        """
        plan = await db.get(Plan, plan_id)
        if plan is None or plan.user_id is not None:
            return False
        experiences = await self._plan_experiences(db, plan_id)
        if not experiences:
            return False

        replaced = 0
        if score < EXPERIENCE_REBUILD_THRESHOLD:
            replaced = await self.replace_experiences(db, plan, experiences)
            experiences = await self._plan_experiences(db, plan_id)

        regenerated = False
        if any(i.get("type") in CONTENT_ISSUES for i in issues):
            regenerated = await self.regenerate_content(
                db, plan, self._regeneration_prompt(plan, experiences, issues), f"rebuild_plans:{plan_id}"
            )
        return replaced > 0 or regenerated

    async def replace_experiences(self, db: AsyncSession, plan: Plan, current: Sequence[Experience]) -> int:
        """Ask the LLM which experiences fit the profile poorly and swap them. Returns swaps applied."""
        if not plan.city_name or plan.user_id is not None:
            return 0
        available = await self._city_alternatives(db, plan.city_name, [e.id for e in current])
        if not available:
            return 0
        try:
            decision = await self.queue.request(
                self._replacement_prompt(plan, current, available),
                schema=ExperienceReplacementDecision,
                context=f"rebuild_plans:experiences:{plan.id}",
            )
        except RequestError as e:
            logger.warning("rebuild_plans.replacement_failed", plan_id=plan.id, error=str(e))
            return 0
        if decision.keep_all or not decision.replacements:
            logger.info("rebuild_plans.keep_all", plan_id=plan.id, reasoning=decision.reasoning)
            return 0
        return await self.apply_replacements(db, plan, decision, {e.id for e in available}, max_replacements(len(current)))

    async def apply_replacements(
        self,
        db: AsyncSession,
        plan: Plan,
        decision: ExperienceReplacementDecision,
        available_ids: Set[int],
        limit: int,
    ) -> int:
        """Only replacements naming an available experience and an entry of this plan apply."""
        applied = 0
        added: Set[int] = set()
        for replacement in decision.replacements:
            if applied >= limit:
                break
            add_id = replacement.add_experience_id
            if add_id not in available_ids or add_id in added:
                continue
            r = await db.execute(
                select(PlanExperience)
                .where(PlanExperience.plan_id == plan.id, PlanExperience.experience_id == replacement.remove_experience_id)
                .order_by(PlanExperience.day_number, PlanExperience.position)
                .limit(1)
            )
            entry = r.scalar_one_or_none()
            if entry is None:
                continue
            day_number, position = entry.day_number, entry.position
            await db.delete(entry)
            await db.flush()
            db.add(PlanExperience(plan_id=plan.id, experience_id=add_id, day_number=day_number, position=position))
            await db.flush()
            added.add(add_id)
            applied += 1
            logger.info(
                "rebuild_plans.experience_replaced",
                plan_id=plan.id,
                removed=replacement.remove_experience_id,
                added=add_id,
                reason=replacement.reason,
            )
        return applied

    async def differentiate_plan(self, db: AsyncSession, pair: Dict[str, Any]) -> bool:
        """Rewrite titles / notes of the smaller plan (ties: the first)."""
        first = await db.get(Plan, pair["plan_1"]["id"])
        second = await db.get(Plan, pair["plan_2"]["id"])
        if first is None or second is None:
            return False
        first_count = len(await self._plan_experiences(db, first.id))
        second_count = len(await self._plan_experiences(db, second.id))
        target, other = (first, second) if first_count <= second_count else (second, first)
        if target.user_id is not None:
            return False
        logger.info("rebuild_plans.differentiating", plan_id=target.id, other_id=other.id)
        return await self.regenerate_content(
            db, target, self._differentiation_prompt(target, other), f"rebuild_plans:differentiate:{target.id}"
        )

    async def delete_worse_plan(self, db: AsyncSession, pair: Dict[str, Any]) -> Optional[int]:
        """Delete the plan with fewer experiences, on a tie the newer one. Returns the deleted id."""
        first = await db.get(Plan, pair["plan_1"]["id"])
        second = await db.get(Plan, pair["plan_2"]["id"])
        if first is None or second is None:
            return None
        first_count = len(await self._plan_experiences(db, first.id))
        second_count = len(await self._plan_experiences(db, second.id))
        if first_count < second_count:
            victim = first
        elif second_count < first_count:
            victim = second
        elif first.created_at is not None and second.created_at is not None and first.created_at > second.created_at:
            victim = first
        else:
            victim = second
        plan_id = victim.id
        if await self.delete_plan(db, plan_id):
            return plan_id
        return None

    async def regenerate_content(self, db: AsyncSession, plan: Plan, prompt: str, context: str) -> bool:
        if plan.user_id is not None:
            return False
        try:
            result = await self.queue.request(prompt, schema=plan_regeneration_model(self.locales), context=context)
        except RequestError as e:
            logger.warning("rebuild_plans.regeneration_failed", plan_id=plan.id, error=str(e))
            return False
        titles = localized_dict(result.titles)
        notes = localized_dict(result.notes)
        if not titles and not notes:
            logger.warning("rebuild_plans.empty_regeneration", plan_id=plan.id)
            return False
        plan.titles = merged_translations(plan.titles, titles)
        plan.notes = merged_translations(plan.notes, notes)
        plan.title = (plan.titles.get("en") or plan.title)[:255]
        await db.flush()
        logger.info("rebuild_plans.regenerated", plan_id=plan.id)
        return True

    # --- helpers --------------------------------------------------------------

    @staticmethod
    async def _plan_experiences(db: AsyncSession, plan_id: int) -> List[Experience]:
        r = await db.execute(
            select(Experience)
            .join(PlanExperience, PlanExperience.experience_id == Experience.id)
            .where(PlanExperience.plan_id == plan_id)
            .order_by(PlanExperience.day_number, PlanExperience.position)
        )
        return list(dict.fromkeys(r.scalars().all()))

    @staticmethod
    async def _city_alternatives(db: AsyncSession, city: str, exclude_ids: Sequence[int]) -> List[Experience]:
        subq = (
            select(ExperienceLocation.experience_id)
            .join(Location, Location.id == ExperienceLocation.location_id)
            .where(Location.city == city)
        )
        q = select(Experience).where(Experience.id.in_(subq)).order_by(Experience.id)
        if exclude_ids:
            q = q.where(Experience.id.notin_(list(exclude_ids)))
        r = await db.execute(q)
        return list(r.scalars().all())

    @staticmethod
    def _listing(experiences: Sequence[Experience]) -> str:
        return "\n".join(
            f"  - ID: {e.id} | {e.title} | Category: {e.category_key or 'general'} | "
            f"Duration: {e.estimated_duration or 'unknown'} min"
            for e in experiences
        )

    def _replacement_prompt(self, plan: Plan, current: Sequence[Experience], available: Sequence[Experience]) -> str:
        profile = plan.tourist_profile or "general"
        return (
            "TASK: Decide which experiences of a travel plan should be replaced.\n\n"
            f"PLAN: city {plan.city_name}, tourist profile {profile}, {plan.duration_days} days\n\n"
            f"CURRENT EXPERIENCES:\n{self._listing(current)}\n\n"
            f"AVAILABLE REPLACEMENTS:\n{self._listing(available)}\n\n"
            f"PROFILE PREFERENCES: {profile_description(plan.tourist_profile)}\n\n"
            "Replace only experiences that clearly do not fit the profile, with a better one from the available list. "
            "Consider thematic coherence, duration balance and variety. "
            f"Replace at most {max_replacements(len(current))}. "
            "If everything fits, set keep_all to true. Give a reason for each replacement."
        )

    def _regeneration_prompt(self, plan: Plan, experiences: Sequence[Experience], issues: Sequence[Dict[str, Any]]) -> str:
        return (
            "TASK: Regenerate the title and travel notes of an existing travel plan that has quality issues.\n\n"
            f"CURRENT PLAN:\nTitle: {plan.title}\nCity: {plan.city_name or 'multi-city'}\n"
            f"Tourist profile: {plan.tourist_profile or 'general'}\nDuration: {plan.duration_days} days\n"
            f"Current notes: {((plan.notes or {}).get('en') or '')[:300]}\n\n"
            f"EXPERIENCES:\n{self._listing(experiences)}\n\n"
            f"QUALITY ISSUES TO FIX:\n{issue_lines(issues)}\n\n"
            "Write a specific, inviting title (never generic) and practical notes of 80-150 words for every language.\n"
            f"{IJEKAVICA_RULES}\n"
            f"Languages: {', '.join(self.locales)}"
        )

    def _differentiation_prompt(self, target: Plan, other: Plan) -> str:
        return (
            "TASK: Give a travel plan a title and notes that clearly set it apart from a similar plan.\n\n"
            f"PLAN TO MODIFY: {target.title} ({target.city_name or 'multi-city'}, "
            f"{target.tourist_profile or 'general'}, {target.duration_days} days)\n"
            f"Notes: {((target.notes or {}).get('en') or '')[:300]}\n\n"
            f"SIMILAR PLAN: {other.title} ({other.city_name or 'multi-city'}, "
            f"{other.tourist_profile or 'general'}, {other.duration_days} days)\n\n"
            "Emphasise the angle that is unique to the plan being modified.\n"
            f"{IJEKAVICA_RULES}\n"
            f"Languages: {', '.join(self.locales)}"
        )
