from sqlalchemy import Column, String, DateTime, Date, ForeignKey, Text, Integer, JSON, Boolean, UniqueConstraint, Index
from sqlalchemy.ext.hybrid import hybrid_property
from datetime import datetime, timezone
import uuid
from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _blocked_assignment(entity: str, value, use: str):
    return RuntimeError(
        f"🚫 DIRECT STATUS ASSIGNMENT BLOCKED!\n"
        f"   Attempted: {entity}.status = '{value}'\n"
        f"   Use: {use}"
    )


class Submission(Base):
    """One questionnaire pass: raw answers, frozen once completed"""
    __tablename__ = "submissions"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    answers = Column(JSON, nullable=False, default=dict)
    _status = Column('status', String(16), nullable=False, default="in_progress")  # in_progress | completed | archived
    sorting_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @hybrid_property
    def status(self):
        """Read-only status - complete / archive go through SubmissionStore"""
        return self._status

    @status.setter
    def status(self, value):
        raise _blocked_assignment("submission", value, "SubmissionStore.complete() / SubmissionStore.archive()")


class Goal(Base):
    __tablename__ = "goals"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    submission_id = Column(String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)

    # Catalog references (never mutated here)
    axis_id = Column(String(64), nullable=False)
    axis_title = Column(String, nullable=True)
    theme_id = Column(String(64), nullable=True)

    priority_order = Column(Integer, nullable=False, default=1)
    _status = Column('status', String(16), nullable=False, default="pending")
    role = Column(String(16), nullable=True)          # foundation | lever | optimization
    reasoning = Column(Text, nullable=True)
    # NULL: created by ensure_goal, not yet placed by a ranking
    ranked_at = Column(DateTime(timezone=True), nullable=True)

    # Context summary cache
    context_summary = Column(Text, nullable=True)
    summary_attempts = Column(Integer, nullable=False, default=0)
    knowledge_generated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "axis_id", "submission_id", name="uq_goal_user_axis_submission"),
        Index("idx_goals_user_status", "user_id", "status"),
    )

    # 🔒 PROTECTION: Direct status assignment is FORBIDDEN
    # Use GoalDomainService.transition() instead
    @hybrid_property
    def status(self):
        """Read-only status - use GoalDomainService.transition() to change"""
        return self._status

    @status.setter
    def status(self, value):
        raise _blocked_assignment("goal", value, f"GoalDomainService.transition(goal, '{value}', reason='...')")


class Plan(Base):
    __tablename__ = "plans"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    goal_id = Column(String(36), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, unique=True)
    submission_id = Column(String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)

    inputs = Column(JSON, nullable=False, default=dict)       # why / blockers / context / pacing
    content = Column(JSON, nullable=True)                     # strategy + phases[actions]
    _status = Column('status', String(16), nullable=False, default="pending")  # pending | active
    current_phase = Column(Integer, nullable=False, default=1)
    generation_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @hybrid_property
    def status(self):
        """Read-only status - a plan becomes active only through PlanGenerator.validate_plan()"""
        return self._status

    @status.setter
    def status(self, value):
        raise _blocked_assignment("plan", value, "PlanGenerator.validate_plan()")


class PlanRefinement(Base):
    """Append-only before/after record of a refine call"""
    __tablename__ = "plan_refinements"
    id = Column(String(36), primary_key=True, default=_uuid)
    plan_id = Column(String(36), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    feedback = Column(Text, nullable=False)
    content_before = Column(JSON, nullable=True)
    content_after = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Action(Base):
    __tablename__ = "actions"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    goal_id = Column(String(36), nullable=True)
    submission_id = Column(String(36), nullable=True, index=True)

    # Stable identity inside the plan content: explicit id or "p{phase}-a{position}"
    plan_action_key = Column(String(128), nullable=False)
    phase_index = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)

    type = Column(String(16), nullable=False)                 # habit | mission | framework
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    rationale = Column(Text, nullable=True)
    tips = Column(JSON, nullable=True)
    quest_tier = Column(String(8), nullable=False, default="side")  # main | side
    time_of_day = Column(String(16), nullable=False, default="any_time")
    scheduled_days = Column(JSON, nullable=True)              # ["mon", ...] or None
    tracking_type = Column(String(16), nullable=False, default="boolean")  # boolean | counter
    framework_details = Column(JSON, nullable=True)           # worksheet definition

    # Progress counters
    target_reps = Column(Integer, nullable=False, default=1)
    current_reps = Column(Integer, nullable=False, default=0)
    last_performed_at = Column(DateTime(timezone=True), nullable=True)

    _status = Column('status', String(16), nullable=False, default="pending")
    archive_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("plan_id", "plan_action_key", name="uq_action_plan_key"),
        Index("idx_actions_user_status", "user_id", "status"),
    )

    @hybrid_property
    def status(self):
        """Read-only status - use ActionDomainService.transition() to change"""
        return self._status

    @status.setter
    def status(self, value):
        raise _blocked_assignment("action", value, f"ActionDomainService.transition(action, '{value}', reason='...')")


class TrackingEvent(Base):
    """Append-only progress log, never updated after insert"""
    __tablename__ = "tracking_events"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    action_id = Column(String(36), ForeignKey("actions.id", ondelete="CASCADE"), nullable=False, index=True)
    operation = Column(String(8), nullable=False)             # add | set
    value = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False, default=0)
    reported_status = Column(String(16), nullable=False)      # completed | missed | partial
    resulting_status = Column(String(16), nullable=False)
    reps_after = Column(Integer, nullable=False)
    event_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    user_id = Column(String(64), primary_key=True)
    birth_date = Column(Date, nullable=True)
    gender = Column(String(32), nullable=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    whatsapp_opted_in = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
