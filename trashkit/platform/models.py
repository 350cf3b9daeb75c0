"""
Entities of the event-engagement platform.

Every entity carries the soft delete lifecycle and creator/modifier
attribution. Games embed their questions as a JSON array of soft-deletable
elements.
"""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from ..soft_delete.mixins import AuditUserMixin, EmbeddedCollectionMixin, SoftDeleteMixin

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class PlatformEntity(SoftDeleteMixin, AuditUserMixin):
    """Columns shared by every platform entity."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)


class TenantEntity(PlatformEntity):
    """Entity owned by one business."""

    business_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("businesses.id"), nullable=True, index=True
    )


class User(Base, PlatformEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "users"
    __active_unique__ = (("email",),)

    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="staff", nullable=False)
    business_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


class Business(Base, PlatformEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "businesses"
    __active_unique__ = (("slug",),)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)


class Event(Base, TenantEntity):  # type: ignore[valid-type,misc]
    """An event; ``event_type`` separates public (EventReg) from employee (CheckIn)."""

    __tablename__ = "events"
    __active_unique__ = (("slug",),)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), default="public", nullable=False)


class Registration(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "registrations"

    event_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class Poll(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "polls"

    question: Mapped[str] = mapped_column(Text, nullable=False)


class SpinWheel(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "spin_wheels"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)


class SpinWheelParticipant(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "spin_wheel_participants"

    spin_wheel_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Game(Base, TenantEntity, EmbeddedCollectionMixin):  # type: ignore[valid-type,misc]
    """A quiz (``mode="solo"``) or duel (``mode="pvp"``) game."""

    __tablename__ = "games"
    __active_unique__ = (("slug",),)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    mode: Mapped[str] = mapped_column(String(10), default="solo", nullable=False)
    questions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    def add_question(self, question: str, **fields: Any) -> Dict[str, Any]:
        element = {
            "id": new_id(),
            "question": question,
            "is_deleted": False,
            "deleted_at": None,
            "deleted_by": None,
            **fields,
        }
        self.replace_embedded("questions", self.embedded("questions") + [element])
        return element


class GameSession(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "game_sessions"

    game_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)


class EventQuestion(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "event_questions"

    event_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Visitor(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "visitors"

    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)


class SurveyForm(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "survey_forms"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    event_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


class SurveyResponse(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "survey_responses"

    form_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    answers: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)


class WalkIn(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "walk_ins"

    registration_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


class WallConfig(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "wall_configs"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)


class DisplayMedia(Base, TenantEntity):  # type: ignore[valid-type,misc]
    __tablename__ = "display_media"

    wall_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    media_url: Mapped[str] = mapped_column(String(500), nullable=False)


class GlobalConfig(Base, PlatformEntity):  # type: ignore[valid-type,misc]
    """Platform-wide settings; at most one is active."""

    __tablename__ = "global_configs"

    app_name: Mapped[str] = mapped_column(String(200), nullable=False)
    settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
