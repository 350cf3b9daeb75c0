"""
Tests for soft delete functionality.

Tests cover the lifecycle mixins, embedded collections, storage constraints
and the generic lifecycle services.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from trashkit.platform.models import (
    Event,
    Game,
    GameSession,
    GlobalConfig,
    Poll,
    Registration,
    new_id,
)
from trashkit.soft_delete import (
    Actor,
    EmbeddedSoftDeleteService,
    GuardRefusedError,
    NotInTrashError,
    Operation,
    RestoreConflictError,
    SoftDeleteService,
)
from trashkit.soft_delete.mixins import AuditUserMixin, restore_element, soft_delete_element, utcnow

ADMIN = new_id()
TENANT_A = new_id()
TENANT_B = new_id()


async def persist(database, *records):
    async with database.session() as session:
        session.add_all(records)
    return records


async def reload(database, entity, record_id):
    async with database.session() as session:
        return await session.get(entity, record_id)


def trashed_event(slug, event_type="public", actor_id=ADMIN, **kwargs):
    kwargs.setdefault("id", new_id())
    event = Event(name=slug.title(), slug=slug, event_type=event_type, **kwargs)
    event.soft_delete(actor_id)
    return event


class TestSoftDeleteMixin:
    """Test the SoftDeleteMixin functionality."""

    def test_soft_delete_sets_lifecycle_fields(self):
        """Soft delete marks the record and records who and when."""
        poll = Poll(question="Favourite talk?")
        poll.soft_delete(ADMIN)

        assert poll.is_deleted is True
        assert poll.deleted_at is not None
        assert poll.deleted_at <= utcnow()
        assert poll.deleted_by == ADMIN

    def test_soft_delete_twice_is_idempotent(self):
        """A second soft delete keeps the record deleted without error."""
        poll = Poll(question="Favourite talk?")
        poll.soft_delete(ADMIN)
        first = poll.deleted_at

        poll.soft_delete(ADMIN)

        assert poll.is_deleted is True
        assert poll.deleted_by == ADMIN
        assert poll.deleted_at >= first

    def test_anonymous_soft_delete_still_stamps_time(self):
        """Public actions have no actor but still carry a deletion time."""
        poll = Poll(question="Favourite talk?")
        poll.soft_delete()

        assert poll.is_deleted is True
        assert poll.deleted_at is not None
        assert poll.deleted_by is None

    def test_restore_clears_lifecycle_fields(self):
        """Restore returns all three fields to their active values."""
        poll = Poll(question="Favourite talk?")
        poll.soft_delete(ADMIN)
        poll.restore()

        assert poll.is_deleted is False
        assert poll.deleted_at is None
        assert poll.deleted_by is None

    def test_to_dict_can_hide_lifecycle_fields(self):
        poll = Poll(id=new_id(), question="Favourite talk?")
        poll.soft_delete(ADMIN)

        full = poll.to_dict()
        assert full["is_deleted"] is True
        assert isinstance(full["deleted_at"], str)

        public = poll.to_dict(include_deleted_fields=False)
        assert "is_deleted" not in public
        assert "deleted_by" not in public
        assert public["question"] == "Favourite talk?"

    @pytest.mark.asyncio
    async def test_round_trip_restores_previous_state(self, database):
        """Soft delete then restore yields the pre-delete state."""
        (poll,) = await persist(database, Poll(question="Best keynote?", business_id=TENANT_A))
        before = (await reload(database, Poll, poll.id)).to_dict()

        poll.soft_delete(ADMIN)
        await persist(database, poll)
        poll.restore()
        await persist(database, poll)

        after = (await reload(database, Poll, poll.id)).to_dict()
        assert after == before

    @pytest.mark.asyncio
    async def test_check_constraint_rejects_deleted_without_timestamp(self, database):
        """The storage layer refuses a deleted flag without a deletion time."""
        with pytest.raises(IntegrityError):
            await persist(database, Poll(question="Broken", is_deleted=True))

    @pytest.mark.asyncio
    async def test_check_constraint_rejects_active_with_deleter(self, database):
        with pytest.raises(IntegrityError):
            await persist(database, Poll(question="Broken", deleted_by=ADMIN))

    @pytest.mark.asyncio
    async def test_active_unique_ignores_trashed_rows(self, database):
        """Slug uniqueness applies to active records only."""
        await persist(database, trashed_event("launch"))
        await persist(database, Event(name="Launch", slug="launch"))

        with pytest.raises(IntegrityError):
            await persist(database, Event(name="Launch again", slug="launch"))

    @pytest.mark.asyncio
    async def test_statement_builders(self, database):
        await persist(
            database,
            Poll(question="Active"),
            Poll(question="Gone", is_deleted=True, deleted_at=utcnow()),
        )

        async with database.session() as session:
            active = (await session.scalars(Poll.select_active())).all()
            deleted = (await session.scalars(Poll.select_deleted())).all()
            everything = (await session.scalars(Poll.select_all())).all()

        assert [p.question for p in active] == ["Active"]
        assert [p.question for p in deleted] == ["Gone"]
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_find_count_and_purge_deleted(self, database):
        now = utcnow()
        older = Poll(question="Older", business_id=TENANT_A)
        older.soft_delete(ADMIN)
        older.deleted_at = now - timedelta(hours=1)
        newer = Poll(question="Newer", business_id=TENANT_A)
        newer.soft_delete(ADMIN)
        other = Poll(question="Other tenant", business_id=TENANT_B)
        other.soft_delete(ADMIN)
        await persist(database, older, newer, other)

        async with database.session() as session:
            found = await Poll.find_deleted(session, Poll.business_id == TENANT_A)
            assert [p.question for p in found] == ["Newer", "Older"]
            assert await Poll.count_deleted(session) == 3
            assert await Poll.delete_many_deleted(session, Poll.business_id == TENANT_A) == 2

        async with database.session() as session:
            assert await Poll.count_deleted(session) == 1

    @pytest.mark.asyncio
    async def test_find_active_conflicts(self, database):
        trashed = trashed_event("summit")
        await persist(database, trashed, Event(name="Summit", slug="summit"))

        async with database.session() as session:
            record = await session.get(Event, trashed.id)
            assert await record.find_active_conflicts(session) == [("slug",)]


class TestAuditUserMixin:
    """Test creator and modifier attribution."""

    def test_created_by_is_set_once(self):
        poll = Poll(question="Q")
        poll.stamp_create("first")
        poll.stamp_create("second")

        assert poll.created_by == "first"

    def test_stamp_update_never_alters_created_by(self):
        poll = Poll(question="Q")
        poll.stamp_create("creator")
        poll.stamp_update("editor")
        poll.stamp_update("editor-2")

        assert poll.created_by == "creator"
        assert poll.updated_by == "editor-2"

    def test_anonymous_stamps_are_ignored(self):
        poll = Poll(question="Q")
        poll.stamp_create(None)
        poll.stamp_update(None)

        assert poll.created_by is None
        assert poll.updated_by is None

    def test_add_updated_by(self):
        update = {"question": "New"}

        assert AuditUserMixin.add_updated_by(update, ADMIN) == {
            "question": "New",
            "updated_by": ADMIN,
        }
        assert AuditUserMixin.add_updated_by(update, None) == {"question": "New"}
        assert "updated_by" not in update

    @pytest.mark.asyncio
    async def test_create_with_audit_user_single(self, database):
        async with database.session() as session:
            poll = await Poll.create_with_audit_user(
                session, {"question": "Single?"}, ADMIN
            )

        assert isinstance(poll, Poll)
        stored = await reload(database, Poll, poll.id)
        assert stored.created_by == ADMIN
        assert stored.is_deleted is False

    @pytest.mark.asyncio
    async def test_create_with_audit_user_many(self, database):
        async with database.session() as session:
            polls = await Poll.create_with_audit_user(
                session, [{"question": "One?"}, {"question": "Two?"}], ADMIN
            )

        assert [p.question for p in polls] == ["One?", "Two?"]
        assert all(p.created_by == ADMIN for p in polls)

    @pytest.mark.asyncio
    async def test_set_audit_user_distinguishes_new_records(self, database):
        poll = Poll(question="Q")
        poll.set_audit_user("creator")
        assert poll.created_by == "creator"
        await persist(database, poll)

        async with database.session() as session:
            stored = await session.get(Poll, poll.id)
            stored.set_audit_user("editor")

        stored = await reload(database, Poll, poll.id)
        assert stored.created_by == "creator"
        assert stored.updated_by == "editor"


class TestEmbeddedCollection:
    """Test soft-deletable children embedded in a JSON array."""

    def test_element_helpers_return_copies(self):
        element = {"id": "q1", "question": "Why?", "is_deleted": False}

        deleted = soft_delete_element(element, ADMIN)
        assert deleted["is_deleted"] is True
        assert deleted["deleted_by"] == ADMIN
        assert isinstance(deleted["deleted_at"], str)
        assert element["is_deleted"] is False

        restored = restore_element(deleted)
        assert restored["is_deleted"] is False
        assert restored["deleted_at"] is None
        assert restored["deleted_by"] is None

    def test_soft_delete_restore_and_remove(self):
        game = Game(title="Trivia", slug="trivia", mode="solo")
        first = game.add_question("Capital of France?")
        second = game.add_question("2 + 2?")

        assert game.soft_delete_embedded("questions", first["id"], ADMIN) is True
        assert game.find_embedded("questions", first["id"])["is_deleted"] is True
        assert game.find_embedded("questions", second["id"])["is_deleted"] is False

        assert game.restore_embedded("questions", first["id"]) is True
        assert game.find_embedded("questions", first["id"])["is_deleted"] is False

        assert game.remove_embedded("questions", second["id"]) is True
        assert [q["id"] for q in game.embedded("questions")] == [first["id"]]

    def test_unknown_element_is_reported(self):
        game = Game(title="Trivia", slug="trivia", mode="solo")
        game.add_question("Capital of France?")

        assert game.soft_delete_embedded("questions", "missing") is False
        assert game.remove_embedded("questions", "missing") is False
        assert game.find_embedded("questions", "missing") is None


class TestSoftDeleteService:
    """Test the generic lifecycle routines."""

    @pytest.mark.asyncio
    async def test_restore(self, database, registry):
        poll = Poll(question="Q", business_id=TENANT_A)
        poll.soft_delete(ADMIN)
        await persist(database, poll)

        service = SoftDeleteService(database, registry["poll"], Actor(id=ADMIN))
        outcome = await service.restore(poll.id)

        assert outcome.succeeded
        assert outcome.operation == Operation.RESTORE.value
        assert outcome.affected == 1
        assert outcome.tenant_id == TENANT_A
        assert outcome.data["is_deleted"] is False

        stored = await reload(database, Poll, poll.id)
        assert stored.is_deleted is False
        assert stored.updated_by == ADMIN

    @pytest.mark.asyncio
    async def test_restore_active_record_is_not_in_trash(self, database, registry):
        (poll,) = await persist(database, Poll(question="Q"))
        service = SoftDeleteService(database, registry["poll"], Actor(id=ADMIN))

        with pytest.raises(NotInTrashError) as exc_info:
            await service.restore(poll.id)

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Poll not found in trash"

    @pytest.mark.asyncio
    async def test_module_condition_scopes_records(self, database, registry):
        """An employee event is not in the public events trash."""
        event = trashed_event("staff-day", event_type="employee")
        await persist(database, event)

        service = SoftDeleteService(database, registry["event-eventreg"], Actor(id=ADMIN))
        with pytest.raises(NotInTrashError):
            await service.restore(event.id)

    @pytest.mark.asyncio
    async def test_restore_refuses_unique_conflict(self, database, registry):
        trashed = trashed_event("launch")
        await persist(database, trashed, Event(name="Launch", slug="launch"))

        service = SoftDeleteService(database, registry["event-eventreg"], Actor(id=ADMIN))
        with pytest.raises(RestoreConflictError) as exc_info:
            await service.restore(trashed.id)

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "Cannot restore: slug already in use"
        assert (await reload(database, Event, trashed.id)).is_deleted is True

    @pytest.mark.scenario
    @pytest.mark.asyncio
    async def test_restore_all_skips_conflicts(self, database, registry):
        """Three trashed events, one colliding with an active event."""
        alpha, beta, gamma = (trashed_event(s) for s in ("alpha", "beta", "gamma"))
        await persist(database, alpha, beta, gamma, Event(name="Gamma", slug="gamma"))

        service = SoftDeleteService(database, registry["event-eventreg"], Actor(id=ADMIN))
        outcome = await service.restore_all()

        assert outcome.succeeded
        assert outcome.affected == 2
        assert outcome.skipped == [gamma.id]
        assert (await reload(database, Event, alpha.id)).is_deleted is False
        assert (await reload(database, Event, beta.id)).is_deleted is False
        assert (await reload(database, Event, gamma.id)).is_deleted is True

    @pytest.mark.asyncio
    async def test_restore_all_counts_earlier_restores_as_active(self, database, registry):
        first = trashed_event("expo")
        second = trashed_event("expo")
        await persist(database, first, second)

        service = SoftDeleteService(database, registry["event-eventreg"], Actor(id=ADMIN))
        outcome = await service.restore_all()

        assert outcome.affected == 1
        assert len(outcome.skipped) == 1

    @pytest.mark.asyncio
    async def test_bulk_on_empty_trash(self, database, registry):
        service = SoftDeleteService(database, registry["poll"], Actor(id=ADMIN))

        with pytest.raises(NotInTrashError, match="No Poll items found in trash"):
            await service.restore_all()
        with pytest.raises(NotInTrashError):
            await service.permanent_delete_all()

    @pytest.mark.asyncio
    async def test_permanent_delete_cascades(self, database, registry):
        event = trashed_event("gala")
        registrations = [
            Registration(event_id=event.id, full_name="Ada"),
            Registration(event_id=event.id, full_name="Grace"),
        ]
        unrelated = Registration(event_id=new_id(), full_name="Linus")
        await persist(database, event, *registrations, unrelated)

        service = SoftDeleteService(database, registry["event-eventreg"], Actor(id=ADMIN))
        outcome = await service.permanent_delete(event.id)

        assert outcome.affected == 1
        assert await reload(database, Event, event.id) is None
        async with database.session() as session:
            remaining = (await session.scalars(select(Registration))).all()
        assert [r.full_name for r in remaining] == ["Linus"]

    @pytest.mark.asyncio
    async def test_purge_guard_refuses(self, database, registry):
        game = Game(id=new_id(), title="Duel", slug="duel", mode="pvp")
        game.soft_delete(ADMIN)
        await persist(database, game, GameSession(game_id=game.id))

        service = SoftDeleteService(database, registry["game-eventduel"], Actor(id=ADMIN))
        with pytest.raises(GuardRefusedError, match="Cannot delete game with existing sessions"):
            await service.permanent_delete(game.id)

        assert await reload(database, Game, game.id) is not None

    @pytest.mark.asyncio
    async def test_permanent_delete_all_skips_guarded(self, database, registry):
        busy = Game(id=new_id(), title="Busy", slug="busy", mode="pvp")
        idle = Game(title="Idle", slug="idle", mode="pvp")
        busy.soft_delete(ADMIN)
        idle.soft_delete(ADMIN)
        await persist(database, busy, idle, GameSession(game_id=busy.id))

        service = SoftDeleteService(database, registry["game-eventduel"], Actor(id=ADMIN))
        outcome = await service.permanent_delete_all()

        assert outcome.affected == 1
        assert outcome.skipped == [busy.id]
        assert await reload(database, Game, idle.id) is None

    @pytest.mark.asyncio
    async def test_tenant_scoping(self, database, registry):
        poll = Poll(question="Q", business_id=TENANT_A)
        poll.soft_delete(ADMIN)
        await persist(database, poll)

        outsider = SoftDeleteService(
            database, registry["poll"], Actor(id=ADMIN, tenant_id=TENANT_B)
        )
        with pytest.raises(NotInTrashError):
            await outsider.restore(poll.id)

        owner = SoftDeleteService(
            database, registry["poll"], Actor(id=ADMIN, tenant_id=TENANT_A)
        )
        outcome = await owner.restore(poll.id)
        assert outcome.tenant_id == TENANT_A

    @pytest.mark.asyncio
    async def test_restore_guard(self, database, registry):
        old = GlobalConfig(app_name="Old")
        old.soft_delete(ADMIN)
        await persist(database, old, GlobalConfig(app_name="Current"))

        service = SoftDeleteService(database, registry["globalconfig"], Actor(id=ADMIN))
        with pytest.raises(RestoreConflictError, match="active global configuration"):
            await service.restore(old.id)


class TestEmbeddedSoftDeleteService:
    """Test lifecycle routines for embedded questions."""

    async def make_game(self, database, mode="solo"):
        game = Game(title="Trivia", slug=f"trivia-{mode}", mode=mode, business_id=TENANT_A)
        kept = game.add_question("Kept?")
        trashed = game.add_question("Trashed?")
        game.soft_delete_embedded("questions", trashed["id"], ADMIN)
        await persist(database, game)
        return game, kept, trashed

    @pytest.mark.asyncio
    async def test_restore(self, database, registry):
        game, _, trashed = await self.make_game(database)
        editor = new_id()

        service = EmbeddedSoftDeleteService(database, registry["qnquestion"], Actor(id=editor))
        outcome = await service.restore(trashed["id"])

        assert outcome.affected == 1
        assert outcome.tenant_id == TENANT_A
        assert outcome.data["question"] == "Trashed?"

        stored = await reload(database, Game, game.id)
        assert stored.find_embedded("questions", trashed["id"])["is_deleted"] is False
        assert stored.updated_by == editor

    @pytest.mark.asyncio
    async def test_active_child_is_not_in_trash(self, database, registry):
        _, kept, _ = await self.make_game(database)
        service = EmbeddedSoftDeleteService(database, registry["qnquestion"], Actor(id=ADMIN))

        with pytest.raises(NotInTrashError, match="Question not found in trash"):
            await service.restore(kept["id"])

    @pytest.mark.asyncio
    async def test_parent_condition_scopes_children(self, database, registry):
        _, _, trashed = await self.make_game(database, mode="solo")
        service = EmbeddedSoftDeleteService(database, registry["pvpquestion"], Actor(id=ADMIN))

        with pytest.raises(NotInTrashError):
            await service.permanent_delete(trashed["id"])

    @pytest.mark.asyncio
    async def test_permanent_delete(self, database, registry):
        game, kept, trashed = await self.make_game(database)
        service = EmbeddedSoftDeleteService(database, registry["qnquestion"], Actor(id=ADMIN))

        await service.permanent_delete(trashed["id"])

        stored = await reload(database, Game, game.id)
        assert [q["id"] for q in stored.questions] == [kept["id"]]

    @pytest.mark.asyncio
    async def test_bulk_operations(self, database, registry):
        game, _, _ = await self.make_game(database)
        service = EmbeddedSoftDeleteService(database, registry["qnquestion"], Actor(id=ADMIN))

        restored = await service.restore_all()
        assert restored.affected == 1

        with pytest.raises(NotInTrashError):
            await service.permanent_delete_all()

        async with database.session() as session:
            stored = await session.get(Game, game.id)
            for question in stored.embedded("questions"):
                stored.soft_delete_embedded("questions", question["id"], ADMIN)

        purged = await service.permanent_delete_all()
        assert purged.affected == 2
        assert (await reload(database, Game, game.id)).questions == []
