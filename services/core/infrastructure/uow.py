"""
Unit of Work Pattern + Repositories - Infrastructure Layer
=========================================================
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, delete, func

from models import Submission, Goal, Plan, PlanRefinement, Action, TrackingEvent, UserProfile


class UnitOfWork:
    """
    Тонкий Unit of Work для управления транзакциями.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            goal = await uow.goals.get(uow.session, goal_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self.submissions = SubmissionRepository()
        self.goals = GoalRepository()
        self.plans = PlanRepository()
        self.actions = ActionRepository()
        self.tracking = TrackingRepository()
        self.profiles = ProfileRepository()

    async def __aenter__(self) -> "UnitOfWork":
        """Создаём сессию и начинаем транзакцию"""
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Коммит или rollback + закрытие сессии"""
        try:
            if exc_type is None:
                if self._session:
                    await self._session.commit()
            else:
                if self._session:
                    await self._session.rollback()
        finally:
            if self._session:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        """Доступ к текущей сессии"""
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session


class SubmissionRepository:

    async def get(self, session, submission_id) -> Optional[Submission]:
        stmt = (
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_for_update(self, session, submission_id) -> Optional[Submission]:
        stmt = select(Submission).where(Submission.id == submission_id).with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def save(self, session, submission) -> None:
        session.add(submission)
        await session.flush()


class GoalRepository:
    """Репозиторий для Goal - только CRUD"""

    async def get(self, session, goal_id) -> Optional[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.id == goal_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_for_update(self, session, goal_id) -> Optional[Goal]:
        """Получить цель с pessimistic lock (SELECT ... FOR UPDATE)"""
        stmt = select(Goal).where(Goal.id == goal_id).with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def find(self, session, user_id, axis_id, submission_id) -> Optional[Goal]:
        stmt = select(Goal).where(
            Goal.user_id == user_id,
            Goal.axis_id == axis_id,
            Goal.submission_id == submission_id,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_for_submission(self, session, user_id, submission_id) -> list:
        stmt = (
            select(Goal)
            .where(Goal.user_id == user_id, Goal.submission_id == submission_id)
            .order_by(Goal.priority_order)
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def list_active(self, session, user_id, for_update: bool = False) -> list:
        stmt = select(Goal).where(Goal.user_id == user_id, Goal.status == "active")
        if for_update:
            stmt = stmt.with_for_update()
        return list((await session.execute(stmt)).scalars().all())

    async def latest_active(self, session, user_id) -> Optional[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == user_id, Goal.status == "active")
            .order_by(Goal.updated_at.desc(), Goal.created_at.desc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def delete_many(self, session, goal_ids: list) -> int:
        if not goal_ids:
            return 0
        result = await session.execute(delete(Goal).where(Goal.id.in_(goal_ids)))
        return result.rowcount

    async def save(self, session, goal) -> None:
        """Сохранить (add + flush для получения ID)"""
        session.add(goal)
        await session.flush()


class PlanRepository:

    async def get(self, session, plan_id) -> Optional[Plan]:
        stmt = select(Plan).where(Plan.id == plan_id).execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_for_goal(self, session, goal_id) -> Optional[Plan]:
        stmt = (
            select(Plan)
            .where(Plan.goal_id == goal_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_active_for_user(self, session, user_id) -> Optional[Plan]:
        """Самый свежий активный план пользователя (контекст агента)"""
        stmt = (
            select(Plan)
            .where(Plan.user_id == user_id, Plan.status == "active")
            .order_by(Plan.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_for_submission(self, session, user_id, submission_id) -> list:
        stmt = select(Plan).where(Plan.user_id == user_id, Plan.submission_id == submission_id)
        return list((await session.execute(stmt)).scalars().all())

    async def delete_for_submission(self, session, user_id, submission_id) -> int:
        plan_ids = select(Plan.id).where(Plan.user_id == user_id, Plan.submission_id == submission_id)
        await session.execute(delete(PlanRefinement).where(PlanRefinement.plan_id.in_(plan_ids)))
        result = await session.execute(
            delete(Plan).where(Plan.user_id == user_id, Plan.submission_id == submission_id)
        )
        return result.rowcount

    async def delete_for_goals(self, session, goal_ids: list) -> int:
        if not goal_ids:
            return 0
        plan_ids = select(Plan.id).where(Plan.goal_id.in_(goal_ids))
        await session.execute(delete(PlanRefinement).where(PlanRefinement.plan_id.in_(plan_ids)))
        result = await session.execute(delete(Plan).where(Plan.goal_id.in_(goal_ids)))
        return result.rowcount

    async def add_refinement(self, session, refinement: PlanRefinement) -> None:
        session.add(refinement)
        await session.flush()

    async def list_refinements(self, session, plan_id) -> list:
        stmt = (
            select(PlanRefinement)
            .where(PlanRefinement.plan_id == plan_id)
            .order_by(PlanRefinement.created_at)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def save(self, session, plan) -> None:
        session.add(plan)
        await session.flush()


class ActionRepository:

    async def get(self, session, action_id) -> Optional[Action]:
        stmt = select(Action).where(Action.id == action_id).execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_for_plan(self, session, plan_id) -> list:
        stmt = (
            select(Action)
            .where(Action.plan_id == plan_id)
            .order_by(Action.phase_index, Action.position)
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def list_for_user(self, session, user_id, statuses: tuple = None) -> list:
        stmt = select(Action).where(Action.user_id == user_id)
        if statuses:
            stmt = stmt.where(Action.status.in_(statuses))
        stmt = stmt.order_by(Action.phase_index, Action.position)
        return list((await session.execute(stmt)).scalars().all())

    async def count_active(self, session, user_id, for_update: bool = False) -> int:
        """
        Количество активных действий пользователя.

        for_update=True блокирует активные строки (Postgres), чтобы две
        параллельные активации не прошли обе через потолок.
        """
        if for_update:
            stmt = select(Action.id).where(Action.user_id == user_id, Action.status == "active").with_for_update()
            return len((await session.execute(stmt)).all())
        stmt = select(func.count()).select_from(Action).where(
            Action.user_id == user_id, Action.status == "active"
        )
        return (await session.execute(stmt)).scalar_one()

    async def delete_for_goals(self, session, goal_ids: list) -> int:
        if not goal_ids:
            return 0
        plan_ids = select(Plan.id).where(Plan.goal_id.in_(goal_ids))
        action_ids = select(Action.id).where(Action.plan_id.in_(plan_ids))
        await session.execute(delete(TrackingEvent).where(TrackingEvent.action_id.in_(action_ids)))
        result = await session.execute(delete(Action).where(Action.plan_id.in_(plan_ids)))
        return result.rowcount

    async def delete_for_submission(self, session, user_id, submission_id) -> int:
        plan_ids = select(Plan.id).where(Plan.user_id == user_id, Plan.submission_id == submission_id)
        action_ids = select(Action.id).where(Action.plan_id.in_(plan_ids))
        await session.execute(delete(TrackingEvent).where(TrackingEvent.action_id.in_(action_ids)))
        result = await session.execute(delete(Action).where(Action.plan_id.in_(plan_ids)))
        return result.rowcount

    async def save(self, session, action) -> None:
        session.add(action)
        await session.flush()


class TrackingRepository:
    """Append-only: только вставка и чтение"""

    async def append(self, session, event: TrackingEvent) -> None:
        session.add(event)
        await session.flush()

    async def list_for_action(self, session, action_id) -> list:
        stmt = (
            select(TrackingEvent)
            .where(TrackingEvent.action_id == action_id)
            .order_by(TrackingEvent.created_at)
        )
        return list((await session.execute(stmt)).scalars().all())


class ProfileRepository:

    async def get(self, session, user_id) -> Optional[UserProfile]:
        return await session.get(UserProfile, user_id)

    async def get_or_create(self, session, user_id) -> UserProfile:
        profile = await session.get(UserProfile, user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id)
            session.add(profile)
            await session.flush()
        return profile

