"""
Pytest Configuration and Fixtures

Every test gets its own SQLite file (aiosqlite) with the full schema and a
FakeCollaborators instance standing in for the edge functions.
"""
import asyncio
import copy
import os
import sys
from collections import defaultdict

import pytest
import pytest_asyncio

# database.py refuses to import without a URL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Add services/core to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from database import Base  # noqa: E402
import models  # noqa: E402,F401
from exceptions import CollaboratorUnavailable  # noqa: E402
from schemas import AxisSelection, SummaryResponse, SortPrioritiesResponse, PlanContent, MicroStep  # noqa: E402


USER_ID = "user-1"

AXES = [
    AxisSelection(id="sleep", title="Sommeil", theme_id="energy"),
    AxisSelection(id="focus", title="Concentration", theme_id="mind"),
    AxisSelection(id="stress", title="Stress", theme_id="emotions"),
]


def default_plan_content() -> dict:
    """Три фазы: две main-quest в первой, остальные ждут"""
    return {
        "strategy": "Stabiliser le sommeil avant d'optimiser l'énergie",
        "estimatedDuration": "6 semaines",
        "phases": [
            {
                "title": "Fondations",
                "actions": [
                    {"type": "habitude", "title": "Marche Matinale", "questType": "main",
                     "targetReps": 5, "tracking_type": "boolean", "time_of_day": "morning"},
                    {"type": "mission", "title": "Ranger la chambre", "questType": "main"},
                    {"type": "habitude", "title": "Lecture du soir", "questType": "side", "targetReps": 3},
                ],
            },
            {
                "title": "Construction",
                "actions": [
                    {"type": "mission", "title": "Planifier la semaine", "questType": "main"},
                    {"type": "framework", "title": "Journal de gratitude", "questType": "side",
                     "frameworkDetails": {
                         "type": "recurring",
                         "sections": [{"id": "s1", "label": "Trois choses", "inputType": "list"}],
                     }},
                ],
            },
            {
                "title": "Optimisation",
                "actions": [
                    {"type": "habitude", "title": "Méditation", "questType": "main", "targetReps": 7},
                ],
            },
        ],
    }


class FakeCollaborators:
    """
    In-process replacement for EdgeFunctionClient.

    calls[name] counts invocations; put a function name into `failing` to
    make it raise CollaboratorUnavailable, set `delay` to slow calls down.
    """

    def __init__(self):
        self.calls = defaultdict(int)
        self.failing = set()
        self.delay = 0.0
        self.summary = "Dort mal depuis trois mois, stress au travail"
        self.sorted_axes = None
        self.plan_content = default_plan_content()
        self.refined_content = None
        self.micro_step = {"title": "Poser les chaussures près de la porte", "type": "mission"}
        self.last_generate_kwargs = None
        self.topic_memory = []
        self.optins = []

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.failing:
            raise CollaboratorUnavailable(name, "simulated failure")

    async def summarize_context(self, responses, axis):
        await self._enter("summarize-context")
        return SummaryResponse(summary=self.summary)

    async def sort_priorities(self, axes):
        await self._enter("sort-priorities")
        if self.sorted_axes is not None:
            return SortPrioritiesResponse.model_validate({"sortedAxes": self.sorted_axes})
        roles = ["foundation", "lever", "optimization"]
        return SortPrioritiesResponse.model_validate({
            "sortedAxes": [
                {"originalId": a["id"], "role": roles[i], "reasoning": f"rank {i + 1}"}
                for i, a in enumerate(axes)
            ]
        })

    async def generate_plan(self, inputs, axis, user_id, mode="create", current_plan=None,
                            feedback=None, answers=None, user_profile=None):
        await self._enter("generate-plan")
        self.last_generate_kwargs = {
            "inputs": inputs, "axis": axis, "user_id": user_id, "mode": mode,
            "current_plan": current_plan, "feedback": feedback,
            "answers": answers, "user_profile": user_profile,
        }
        source = self.refined_content if mode == "refine" and self.refined_content else self.plan_content
        PlanContent.model_validate(source)
        return copy.deepcopy(source)

    async def break_down_action(self, action, problem, plan_content, submission_id):
        await self._enter("break-down-action")
        return MicroStep.model_validate(self.micro_step)

    async def process_plan_topic_memory(self, plan_id=None, goal_id=None):
        await self._enter("process-plan-topic-memory")
        self.topic_memory.append(plan_id or goal_id)

    async def whatsapp_optin(self, user_id):
        await self._enter("whatsapp-optin")
        self.optins.append(user_id)

    async def aclose(self):
        return None


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Свежая SQLite база на каждый тест"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    yield factory
    await engine.dispose()


@pytest.fixture
def collaborators():
    return FakeCollaborators()


@pytest_asyncio.fixture
async def services(session_factory, collaborators):
    from api.dependencies import build_services

    built = build_services(session_factory, collaborators)
    yield built
    await built.single_flight.drain()
    await built.side_channels.drain()


@pytest_asyncio.fixture
async def submission(services):
    return await services.submissions.create(USER_ID, {"sleep_q1": "3 réveils par nuit", "focus_q1": "écrans"})


@pytest_asyncio.fixture
async def validated_plan(services, submission):
    """
    Submission ranked on one axis, plan generated and validated.
    Returns the ValidatedPlan.
    """
    await services.sorter.rank_axes(USER_ID, submission.id, AXES[:1])
    await services.plans.generate_plan(USER_ID)
    return await services.plans.validate_plan(USER_ID)
