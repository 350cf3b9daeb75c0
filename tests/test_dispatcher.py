"""Tests for the lifecycle operations dispatcher."""

import uuid

import pytest
from sqlalchemy import select

from trashkit.audit_trail import AuditLogger, LogQuery, tenant_room
from trashkit.platform.models import Event, Game, GameSession, GlobalConfig, Poll, User, new_id
from trashkit.soft_delete import (
    Actor,
    GuardRefusedError,
    InvalidItemIdError,
    NotInTrashError,
    OperationNotImplementedError,
    UnknownModuleError,
)
from trashkit.trash.dispatcher import (
    TRASH_ROOM,
    TRASH_UPDATED_EVENT,
    LifecycleDispatcher,
    validate_item_id,
)

TENANT = new_id()


async def persist(database, *records):
    async with database.session() as session:
        session.add_all(records)
    return records


async def drain_messages(subscription):
    messages = []
    while not subscription.queue.empty():
        messages.append(await subscription.get(timeout=1))
    return messages


class TestValidateItemId:
    """Test item id validation."""

    def test_canonical_form(self):
        item_id = uuid.uuid4()

        assert validate_item_id(item_id) == str(item_id)
        assert validate_item_id(str(item_id).upper()) == str(item_id)

    @pytest.mark.parametrize("bad", ["42", "", None, "not-a-uuid"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidItemIdError) as exc_info:
            validate_item_id(bad)

        assert exc_info.value.status_code == 400


class TestLifecycleDispatcher:
    """Test dispatch, auditing and broadcast of lifecycle operations."""

    @pytest.mark.scenario
    @pytest.mark.asyncio
    async def test_delete_list_restore(self, kit):
        """A soft-deleted poll is listed, restored, then active again."""
        user = User(id=new_id(), full_name="Una User", email="una@example.com")
        poll = Poll(question="Best talk?", business_id=TENANT)
        poll.soft_delete(user.id)
        await persist(kit.database, user, poll)

        listed = (await kit.trash.list_deleted("poll"))["poll"]
        assert [r["id"] for r in listed.items] == [poll.id]
        assert listed.items[0]["deleted_by"] == user.id

        outcome = await kit.dispatcher.restore("poll", poll.id, Actor(id=user.id))

        assert outcome.succeeded
        assert outcome.message == "Poll restored"
        assert (await kit.trash.list_deleted("poll"))["poll"].total == 0
        async with kit.database.session() as session:
            active = (await session.scalars(Poll.select_active())).all()
        assert poll.id in [p.id for p in active]

    @pytest.mark.asyncio
    async def test_successful_operation_is_audited(self, kit):
        actor = Actor(id=new_id(), tenant_id=TENANT)
        poll = Poll(question="Best talk?", business_id=TENANT)
        poll.soft_delete(actor.id)
        await persist(kit.database, poll)

        await kit.dispatcher.restore("poll", poll.id, actor)
        await kit.audit.drain()

        page = await kit.audit.search(LogQuery(actor_id=actor.id))
        assert page.total == 1
        (entry,) = page.items
        assert entry.action == "restore"
        assert entry.subject_kind == "Poll"
        assert entry.subject_id == poll.id
        assert entry.tenant_id == TENANT
        assert entry.module == "VoteCast"
        assert entry.item_name == "Best talk?"
        assert entry.context["module_key"] == "poll"
        assert entry.context["affected"] == 1

    @pytest.mark.asyncio
    async def test_permanent_delete_is_audited_as_delete(self, kit):
        actor = Actor(id=new_id())
        event = Event(name="Gala", slug="gala", event_type="employee")
        event.soft_delete(actor.id)
        await persist(kit.database, event)

        outcome = await kit.dispatcher.permanent_delete("event-checkin", event.id, actor)
        await kit.audit.drain()

        assert outcome.message == "Event permanently deleted"
        page = await kit.audit.search(LogQuery(actor_id=actor.id))
        (entry,) = page.items
        assert entry.action == "delete"
        assert entry.module == "CheckIn"
        # The subject is gone, so no name resolves
        assert entry.item_name is None

    @pytest.mark.asyncio
    async def test_bulk_operation_audit_has_no_subject(self, kit):
        actor = Actor(id=new_id())
        polls = [Poll(question=f"Q{i}") for i in range(3)]
        for poll in polls:
            poll.soft_delete(actor.id)
        await persist(kit.database, *polls)

        outcome = await kit.dispatcher.restore_all("poll", actor)
        await kit.audit.drain()

        assert outcome.affected == 3
        (entry,) = (await kit.audit.search(LogQuery(actor_id=actor.id))).items
        assert entry.subject_id is None
        assert entry.context["operation"] == "restore_all"
        assert entry.context["affected"] == 3

    @pytest.mark.scenario
    @pytest.mark.asyncio
    async def test_anonymous_action_is_applied_but_not_logged(self, kit):
        poll = Poll(question="Public?")
        poll.soft_delete()
        await persist(kit.database, poll)

        outcome = await kit.dispatcher.restore("poll", poll.id)
        await kit.audit.drain()

        assert outcome.succeeded
        async with kit.database.session() as session:
            assert (await session.get(Poll, poll.id)).is_deleted is False
        assert (await kit.audit.stats()).total == 0

    @pytest.mark.asyncio
    async def test_anonymous_action_logged_when_not_actor_gated(self, kit):
        audit = AuditLogger(kit.storage, kit.names, require_actor=False)
        dispatcher = LifecycleDispatcher(kit.database, kit.registry, audit_logger=audit)
        poll = Poll(question="Public?")
        poll.soft_delete()
        await persist(kit.database, poll)

        await dispatcher.restore("poll", poll.id)
        await audit.close()

        (entry,) = (await kit.audit.search(LogQuery())).items
        assert entry.actor_id is None
        assert entry.subject_id == poll.id

    @pytest.mark.asyncio
    async def test_trash_update_is_broadcast(self, kit):
        actor = Actor(id=new_id(), tenant_id=TENANT)
        poll = Poll(question="Q", business_id=TENANT)
        poll.soft_delete(actor.id)
        global_config = GlobalConfig(app_name="Old")
        global_config.soft_delete(actor.id)
        await persist(kit.database, poll, global_config)

        with kit.hub.subscribe(tenant_room(TENANT)) as tenant, kit.hub.subscribe(
            TRASH_ROOM
        ) as platform:
            await kit.dispatcher.restore("poll", poll.id, actor)
            await kit.dispatcher.restore("globalconfig", global_config.id, Actor(id=actor.id))
            await kit.audit.drain()

            tenant_messages = await drain_messages(tenant)
            platform_messages = await drain_messages(platform)

        updates = [m for m in tenant_messages if m.event == TRASH_UPDATED_EVENT]
        assert len(updates) == 1
        assert updates[0].payload["module"] == "poll"
        assert updates[0].payload["item_id"] == poll.id
        assert updates[0].payload["actor_id"] == actor.id
        assert "logCreated" in {m.event for m in tenant_messages}

        assert [m.payload["module"] for m in platform_messages] == ["globalconfig"]
        assert kit.hub.subscriber_count(TRASH_ROOM) == 0

    @pytest.mark.asyncio
    async def test_unknown_module(self, kit):
        with pytest.raises(UnknownModuleError, match="Invalid module: nope"):
            await kit.dispatcher.restore("nope", str(uuid.uuid4()), Actor(id=new_id()))

    @pytest.mark.asyncio
    async def test_invalid_item_id(self, kit):
        with pytest.raises(InvalidItemIdError):
            await kit.dispatcher.permanent_delete("poll", "42", Actor(id=new_id()))

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, kit):
        with pytest.raises(OperationNotImplementedError) as exc_info:
            await kit.dispatcher.restore_all("globalconfig", Actor(id=new_id()))

        assert exc_info.value.message == "Restore all not implemented for this module"

    @pytest.mark.asyncio
    async def test_not_in_trash(self, kit):
        with pytest.raises(NotInTrashError):
            await kit.dispatcher.restore("poll", str(uuid.uuid4()), Actor(id=new_id()))

    @pytest.mark.asyncio
    async def test_guard_refusal_is_surfaced_and_not_audited(self, kit):
        actor = Actor(id=new_id())
        game = Game(id=new_id(), title="Quiz", slug="quiz", mode="solo")
        game.soft_delete(actor.id)
        await persist(kit.database, game, GameSession(game_id=game.id))

        with pytest.raises(GuardRefusedError):
            await kit.dispatcher.permanent_delete("game-quiznest", game.id, actor)
        await kit.audit.drain()

        assert (await kit.audit.stats()).total == 0
        async with kit.database.session() as session:
            assert (await session.scalars(select(Game))).first() is not None

    @pytest.mark.asyncio
    async def test_embedded_question_restore(self, kit):
        actor = Actor(id=new_id())
        game = Game(title="Trivia", slug="trivia", mode="solo")
        question = game.add_question("Capital of France?")
        game.soft_delete_embedded("questions", question["id"], actor.id)
        await persist(kit.database, game)

        outcome = await kit.dispatcher.restore("qnquestion", question["id"], actor)
        await kit.audit.drain()

        assert outcome.item_id == question["id"]
        (entry,) = (await kit.audit.search(LogQuery(actor_id=actor.id))).items
        assert entry.subject_kind == "Question"
        assert entry.module == "QuizNest"
        assert entry.item_name == "Capital of France?"
