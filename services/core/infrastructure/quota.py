"""
Quota counters - compare-and-set в одном UPDATE
===============================================
Read-then-increment races are impossible here: the cap is part of the WHERE
clause, so at most (cap - current) concurrent callers can win.
"""
from sqlalchemy import update

from models import Submission, Goal, Plan
from lifecycle_config import MAX_GENERATION_ATTEMPTS, MAX_SUMMARY_ATTEMPTS, MAX_SORTING_ATTEMPTS
from logging_config import log_quota_decision


async def consume_slot(session, model, row_id, counter: str, cap: int, values: dict = None) -> bool:
    """
    UPDATE <table> SET <counter> = <counter> + 1, ... WHERE id = :id AND <counter> < :cap

    Returns:
        True если слот получен (ровно одна строка обновлена)
    """
    column = getattr(model, counter)
    stmt = (
        update(model)
        .where(model.id == row_id, column < cap)
        .values({counter: column + 1, **(values or {})})
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    granted = result.rowcount == 1
    log_quota_decision(counter, row_id, granted)
    return granted


async def consume_generation_slot(session, plan_id, content: dict, inputs: dict = None) -> bool:
    values = {"content": content}
    if inputs is not None:
        values["inputs"] = inputs
    return await consume_slot(
        session, Plan, plan_id, "generation_attempts", MAX_GENERATION_ATTEMPTS, values,
    )


async def consume_summary_slot(session, goal_id, summary: str, generated_at) -> bool:
    return await consume_slot(
        session, Goal, goal_id, "summary_attempts", MAX_SUMMARY_ATTEMPTS,
        {"context_summary": summary, "knowledge_generated_at": generated_at},
    )


async def consume_sorting_slot(session, submission_id) -> bool:
    return await consume_slot(
        session, Submission, submission_id, "sorting_attempts", MAX_SORTING_ATTEMPTS,
    )
