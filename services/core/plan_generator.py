"""
Plan Generator
==============
Quota-gated wrapper around the generate-plan collaborator.

create  - at most MAX_GENERATION_ATTEMPTS full generations per goal; once the
          cap is reached the stored plan is returned without any external call
refine  - feedback-driven rewrite of the existing plan, never counted, audited
          in plan_refinements
validate - user confirmation: goal + plan become active and the distributor
          re-materializes the confirmed content
"""
from datetime import date
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError

from models import Plan, PlanRefinement
from schemas import PlanInputs, PlanResult, ActionView, ValidatedPlan
from domain.goal_domain_service import PlanState, TransitionReason
from infrastructure.uow import UnitOfWork
from infrastructure.quota import consume_generation_slot
from single_flight import SingleFlight
from goal_service import resolve_goal, activate_goal
from action_distributor import distribute
from exceptions import PlanNotFound, RefineRequiresFeedback, InvariantViolation
from lifecycle_config import MAX_GENERATION_ATTEMPTS
from logging_config import get_logger

logger = get_logger(__name__)


def _result(plan: Plan, quota_exhausted: bool = False) -> PlanResult:
    return PlanResult(
        plan_id=plan.id,
        goal_id=plan.goal_id,
        status=plan.status,
        content=plan.content,
        generation_attempts=plan.generation_attempts,
        quota_exhausted=quota_exhausted,
    )


def _axis_payload(goal) -> Dict[str, Any]:
    return {
        "id": goal.axis_id,
        "title": goal.axis_title,
        "theme": goal.theme_id,
        "role": goal.role,
        "reasoning": goal.reasoning,
        "context_summary": goal.context_summary,
    }


class PlanGenerator:

    def __init__(self, session_factory, collaborators, side_channels=None, single_flight: SingleFlight = None):
        self._session_factory = session_factory
        self._collaborators = collaborators
        self._side_channels = side_channels
        self._single_flight = single_flight or SingleFlight()

    async def generate_plan(
        self,
        user_id: str,
        goal_id: Optional[str] = None,
        inputs: Optional[PlanInputs] = None,
        mode: str = "create",
        feedback: Optional[str] = None,
        answers: Optional[Dict[str, Any]] = None,
        birth_date: Optional[date] = None,
        gender: Optional[str] = None,
    ) -> PlanResult:
        if mode == "refine":
            return await self.refine_plan(user_id, goal_id, feedback, answers)
        if mode != "create":
            raise ValueError(f"Unknown generation mode: {mode}")

        inputs = inputs or PlanInputs()
        async with UnitOfWork(self._session_factory) as uow:
            goal = await resolve_goal(uow, user_id, goal_id)
            plan = await uow.plans.get_for_goal(uow.session, goal.id)

            if plan is not None and plan.generation_attempts >= MAX_GENERATION_ATTEMPTS:
                logger.info("plan_quota_exhausted", goal_id=goal.id, attempts=plan.generation_attempts)
                return _result(plan, quota_exhausted=True)

            profile = await self._save_profile_prerequisites(uow, user_id, birth_date, gender)
            submission = await uow.submissions.get(uow.session, goal.submission_id)
            context = {
                "goal_id": goal.id,
                "submission_id": goal.submission_id,
                "axis": _axis_payload(goal),
                "answers": answers if answers is not None else dict(submission.answers or {}),
                "profile": profile,
            }

        key = ("plan", user_id, context["goal_id"])
        return await self._single_flight.run(key, lambda: self._create(user_id, inputs, context))

    async def _create(self, user_id: str, inputs: PlanInputs, context: Dict[str, Any]) -> PlanResult:
        # CollaboratorUnavailable propagates: the user gets a retry prompt, no slot is spent
        content = await self._collaborators.generate_plan(
            inputs.model_dump(),
            context["axis"],
            user_id,
            mode="create",
            answers=context["answers"],
            user_profile=context["profile"],
        )

        goal_id = context["goal_id"]
        try:
            async with UnitOfWork(self._session_factory) as uow:
                plan = await uow.plans.get_for_goal(uow.session, goal_id)
                if plan is None:
                    plan = Plan(
                        user_id=user_id,
                        goal_id=goal_id,
                        submission_id=context["submission_id"],
                        inputs=inputs.model_dump(),
                        content=content,
                        _status=PlanState.PENDING.value,
                        generation_attempts=1,
                    )
                    await uow.plans.save(uow.session, plan)
                    logger.info("plan_generated", goal_id=goal_id, plan_id=plan.id, attempts=1)
                    return _result(plan)
        except IntegrityError:
            # параллельный запрос успел вставить план - идём через CAS
            logger.info("plan_insert_conflict", goal_id=goal_id)

        async with UnitOfWork(self._session_factory) as uow:
            plan = await uow.plans.get_for_goal(uow.session, goal_id)
            won = await consume_generation_slot(uow.session, plan.id, content, inputs.model_dump())
            plan = await uow.plans.get(uow.session, plan.id)

            if not won:
                logger.info("plan_slot_lost", goal_id=goal_id, attempts=plan.generation_attempts)
                return _result(plan, quota_exhausted=True)

            if plan.generation_attempts > MAX_GENERATION_ATTEMPTS:
                raise InvariantViolation("generation_attempts above cap", plan.id)

            logger.info("plan_regenerated", goal_id=goal_id, plan_id=plan.id, attempts=plan.generation_attempts)
            return _result(plan)

    async def refine_plan(
        self,
        user_id: str,
        goal_id: Optional[str],
        feedback: Optional[str],
        answers: Optional[Dict[str, Any]] = None,
    ) -> PlanResult:
        """Rewrite the plan from free-text feedback; generation_attempts is untouched"""
        async with UnitOfWork(self._session_factory) as uow:
            goal = await resolve_goal(uow, user_id, goal_id)
            if not feedback or not feedback.strip():
                raise RefineRequiresFeedback(goal.id)
            plan = await uow.plans.get_for_goal(uow.session, goal.id)
            if plan is None or not plan.content:
                raise PlanNotFound(goal_id=goal.id)
            context = {
                "goal_id": goal.id,
                "plan_id": plan.id,
                "axis": _axis_payload(goal),
                "inputs": dict(plan.inputs or {}),
                "current_plan": plan.content,
            }

        key = ("refine", user_id, context["goal_id"], feedback.strip())
        return await self._single_flight.run(
            key, lambda: self._refine(user_id, context, feedback.strip(), answers)
        )

    async def _refine(self, user_id, context, feedback: str, answers) -> PlanResult:
        content = await self._collaborators.generate_plan(
            context["inputs"],
            context["axis"],
            user_id,
            mode="refine",
            current_plan=context["current_plan"],
            feedback=feedback,
            answers=answers,
        )

        async with UnitOfWork(self._session_factory) as uow:
            plan = await uow.plans.get(uow.session, context["plan_id"])
            if plan is None:
                raise PlanNotFound(plan_id=context["plan_id"])

            before = plan.content
            plan.content = content
            await uow.plans.add_refinement(uow.session, PlanRefinement(
                plan_id=plan.id,
                user_id=user_id,
                feedback=feedback,
                content_before=before,
                content_after=content,
            ))
            logger.info("plan_refined", plan_id=plan.id, attempts=plan.generation_attempts)
            result = _result(plan)

        if self._side_channels is not None:
            self._side_channels.schedule_topic_memory(plan_id=result.plan_id)
        return result

    async def validate_plan(self, user_id: str, goal_id: Optional[str] = None) -> ValidatedPlan:
        """
        Idempotent confirmation. Always re-runs the distributor so content
        edited by refine is reflected even if the plan row pre-dated it.
        """
        async with UnitOfWork(self._session_factory) as uow:
            goal = await resolve_goal(uow, user_id, goal_id)
            plan = await uow.plans.get_for_goal(uow.session, goal.id)
            if plan is None or not plan.content:
                raise PlanNotFound(goal_id=goal.id)

            active = await uow.goals.list_active(uow.session, user_id, for_update=True)
            activate_goal(goal, [g for g in active if g.id != goal.id], TransitionReason.PLAN_VALIDATED.value)
            plan._status = PlanState.ACTIVE.value
            await uow.session.flush()

            actions = await distribute(uow, user_id, plan.id, plan.submission_id, plan.content)

            profile = await uow.profiles.get_or_create(uow.session, user_id)
            profile.onboarding_completed = True

            logger.info("plan_validated", plan_id=plan.id, goal_id=goal.id, actions=len(actions))
            validated = ValidatedPlan(
                plan=_result(plan),
                actions=[ActionView.model_validate(a) for a in actions],
            )

        if self._side_channels is not None:
            self._side_channels.schedule_topic_memory(plan_id=validated.plan.plan_id)
        return validated

    async def get_plan(self, user_id: str, goal_id: Optional[str] = None) -> PlanResult:
        async with UnitOfWork(self._session_factory) as uow:
            goal = await resolve_goal(uow, user_id, goal_id)
            plan = await uow.plans.get_for_goal(uow.session, goal.id)
            if plan is None:
                raise PlanNotFound(goal_id=goal.id)
            return _result(plan)

    async def _save_profile_prerequisites(self, uow, user_id, birth_date, gender) -> Optional[Dict[str, Any]]:
        """Persist optional biographical fields; their absence never blocks generation"""
        if birth_date is not None or gender is not None:
            profile = await uow.profiles.get_or_create(uow.session, user_id)
            if birth_date is not None:
                profile.birth_date = birth_date
            if gender is not None:
                profile.gender = gender
            await uow.session.flush()
            logger.info("profile_prerequisites_saved", user_id=user_id)
        else:
            profile = await uow.profiles.get(uow.session, user_id)

        if profile is None:
            return None
        return {
            "birth_date": profile.birth_date.isoformat() if profile.birth_date else None,
            "gender": profile.gender,
        }
