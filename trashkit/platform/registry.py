"""
Production module registry and name-resolution table for the platform.

``build_registry`` returns the table every trash component is given at
start-up; ``build_name_resolver`` returns the subject label lookup used by
the audit logger.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit_trail.models import ModuleLabel, SubjectKind
from ..audit_trail.names import ColumnLabel, EmbeddedLabel, NameResolver, NoLabel
from ..database import Database
from ..registry import (
    SINGLE_OPERATIONS,
    Cascade,
    EmbeddedSpec,
    JoinSpec,
    ModuleDescriptor,
    ModuleRegistry,
    QueryStrategy,
)
from ..soft_delete.services import EmbeddedSoftDeleteService, SoftDeleteService
from .models import (
    Business,
    DisplayMedia,
    Event,
    EventQuestion,
    Game,
    GameSession,
    GlobalConfig,
    Poll,
    Registration,
    SpinWheel,
    SpinWheelParticipant,
    SurveyForm,
    SurveyResponse,
    User,
    Visitor,
    WalkIn,
    WallConfig,
)

PUBLIC_EVENT = "public"
EMPLOYEE_EVENT = "employee"
SOLO_GAME = "solo"
PVP_GAME = "pvp"


async def refuse_game_with_sessions(session: AsyncSession, game: Any) -> Optional[str]:
    stmt = select(GameSession.id).where(GameSession.game_id == game.id).limit(1)
    if (await session.execute(stmt)).first() is not None:
        return "Cannot delete game with existing sessions"
    return None


async def refuse_second_global_config(session: AsyncSession, config: Any) -> Optional[str]:
    stmt = GlobalConfig.select_active().where(GlobalConfig.id != config.id).limit(1)
    if (await session.scalars(stmt)).first() is not None:
        return "Cannot restore: an active global configuration already exists"
    return None


def _flat(key: str, entity: type, **kwargs: Any) -> ModuleDescriptor:
    kwargs.setdefault("service", SoftDeleteService)
    return ModuleDescriptor(key=key, entity=entity, **kwargs)


def build_registry() -> ModuleRegistry:
    """Build the registry of every module with a trash."""
    registration_cascade = (Cascade(Registration, "event_id"),)
    questions = EmbeddedSpec(collection="questions", label_field="question")

    return ModuleRegistry(
        [
            _flat("business", Business, tenant_field="id", label=ModuleLabel.OTHER),
            _flat(
                "event-eventreg",
                Event,
                condition={"event_type": PUBLIC_EVENT},
                subject_kind=SubjectKind.EVENT,
                display_name="Event",
                cascades=registration_cascade,
            ),
            _flat(
                "event-checkin",
                Event,
                condition={"event_type": EMPLOYEE_EVENT},
                subject_kind=SubjectKind.EVENT,
                display_name="Event",
                cascades=registration_cascade,
            ),
            _flat(
                "registration-eventreg",
                Registration,
                strategy=QueryStrategy.JOINED,
                join=JoinSpec(
                    Event, "event_id", {"event_type": PUBLIC_EVENT}, as_field="event"
                ),
                subject_kind=SubjectKind.REGISTRATION,
            ),
            _flat(
                "registration-checkin",
                Registration,
                strategy=QueryStrategy.JOINED,
                join=JoinSpec(
                    Event, "event_id", {"event_type": EMPLOYEE_EVENT}, as_field="event"
                ),
                subject_kind=SubjectKind.REGISTRATION,
            ),
            _flat("poll", Poll, subject_kind=SubjectKind.POLL),
            _flat(
                "spinwheel",
                SpinWheel,
                subject_kind=SubjectKind.SPIN_WHEEL,
                display_name="Spin wheel",
            ),
            _flat(
                "spinwheelparticipant",
                SpinWheelParticipant,
                display_name="Participant",
                label=ModuleLabel.EVENT_WHEEL,
            ),
            _flat("displaymedia", DisplayMedia, display_name="Display media"),
            _flat(
                "wallconfig",
                WallConfig,
                subject_kind=SubjectKind.MOSAIC_WALL,
                display_name="Wall configuration",
            ),
            _flat(
                "globalconfig",
                GlobalConfig,
                operations=SINGLE_OPERATIONS,
                tenant_field=None,
                display_name="Global configuration",
                restore_guard=refuse_second_global_config,
            ),
            _flat("user", User, subject_kind=SubjectKind.USER),
            _flat(
                "game-quiznest",
                Game,
                condition={"mode": SOLO_GAME},
                subject_kind=SubjectKind.GAME,
                purge_guard=refuse_game_with_sessions,
            ),
            _flat(
                "game-eventduel",
                Game,
                condition={"mode": PVP_GAME},
                subject_kind=SubjectKind.GAME,
                purge_guard=refuse_game_with_sessions,
            ),
            _flat(
                "qnquestion",
                Game,
                strategy=QueryStrategy.EMBEDDED,
                condition={"mode": SOLO_GAME},
                embedded=questions,
                service=EmbeddedSoftDeleteService,
                subject_kind=SubjectKind.QUESTION,
                display_name="Question",
            ),
            _flat(
                "pvpquestion",
                Game,
                strategy=QueryStrategy.EMBEDDED,
                condition={"mode": PVP_GAME},
                embedded=questions,
                service=EmbeddedSoftDeleteService,
                subject_kind=SubjectKind.QUESTION,
                display_name="Question",
            ),
            _flat(
                "gamesession-eventduel",
                GameSession,
                strategy=QueryStrategy.JOINED,
                join=JoinSpec(Game, "game_id", {"mode": PVP_GAME}, as_field="game"),
                display_name="Game session",
            ),
            _flat(
                "question",
                EventQuestion,
                subject_kind=SubjectKind.QUESTION,
                display_name="Question",
            ),
            _flat("visitor", Visitor),
            _flat(
                "surveyform",
                SurveyForm,
                subject_kind=SubjectKind.EVENT,
                display_name="Survey form",
            ),
            _flat("surveyresponse", SurveyResponse, display_name="Survey response"),
            _flat("walkin", WalkIn, display_name="Walk-in"),
        ]
    )


def build_name_resolver(database: Database) -> NameResolver:
    """Build the subject label lookup covering every subject kind."""
    spin_wheel = ColumnLabel(SpinWheel, ("title",))

    return NameResolver(
        database,
        {
            SubjectKind.EVENT: (
                ColumnLabel(Event, ("name",)),
                ColumnLabel(SurveyForm, ("title",)),
            ),
            SubjectKind.REGISTRATION: (
                ColumnLabel(Registration, ("full_name", "email", "token")),
            ),
            SubjectKind.WHEEL_SPIN: (spin_wheel,),
            SubjectKind.SPIN_WHEEL: (spin_wheel,),
            SubjectKind.MOSAIC_WALL: (ColumnLabel(WallConfig, ("name",)),),
            SubjectKind.POLL: (ColumnLabel(Poll, ("question",)),),
            SubjectKind.GAME: (ColumnLabel(Game, ("title",)),),
            SubjectKind.QUESTION: (
                EmbeddedLabel(Game, "questions", "question"),
                ColumnLabel(EventQuestion, ("text",)),
            ),
            SubjectKind.USER: (ColumnLabel(User, ("full_name", "email")),),
            SubjectKind.SURVEY_RECIPIENT: (NoLabel(),),
        },
    )
