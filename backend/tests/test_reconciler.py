# tests/test_reconciler.py — Drag-and-drop move reconciliation
import asyncio

import pytest

from errors import AccessDenied, ColumnNotFound, PersistenceFailure
from gateway import PersistenceGateway
from realtime import create_hub
from schemas import MoveTask, TaskCreate
from tests.conftest import FakeConnection, as_current_user, column_lists


class FailingCommitGateway(PersistenceGateway):
    async def commit(self):
        await self.rollback()
        raise PersistenceFailure()


def stalling_gateway(entered: asyncio.Event):
    class StallingCommitGateway(PersistenceGateway):
        async def commit(self):
            entered.set()
            await asyncio.sleep(30)
            await super().commit()

    return StallingCommitGateway


async def _seed(db_session, workspace, user, titles, column_id):
    """Create tasks through a default hub so failing gateways only affect the move"""
    seeder = create_hub()
    ids = []
    for title in titles:
        data = TaskCreate(
            title=title, project_id=workspace.project_id, board_id=workspace.board_id, column_id=column_id,
        )
        task = await seeder.broadcaster.create_task(db_session, as_current_user(user), data)
        ids.append(task["id"])
    return ids


async def _join(hub, db_session, workspace, *users):
    conns = []
    for user in users:
        conn = FakeConnection(user)
        await hub.rooms.join(db_session, conn, workspace.board_id)
        conns.append(conn)
    for conn in conns:
        conn.clear()
    return conns


def _move(workspace, task_id, from_column, to_column, position=None):
    return MoveTask(
        task_id=task_id, from_column_id=from_column, to_column_id=to_column,
        board_id=workspace.board_id, position=position,
    )


@pytest.mark.asyncio
async def test_move_between_columns_at_position(hub, db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    d1, d2 = await _seed(db_session, workspace, alice, ["Done A", "Done B"], workspace.done)
    a, b = await _join(hub, db_session, workspace, alice, bob)

    result = await hub.reconciler.move_task(
        db_session, as_current_user(alice), _move(workspace, t1, workspace.todo, workspace.done, 1), connection=a,
    )

    assert result["position"] == 1
    assert result["confirmed"] is True
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == []
    assert lists[workspace.done] == [d1, t1, d2]
    stored = await PersistenceGateway(db_session).get_task(t1, fresh=True)
    assert (stored.column_id, stored.order) == (workspace.done, 1)


@pytest.mark.asyncio
async def test_optimistic_event_skips_initiating_connection(hub, db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    a, b = await _join(hub, db_session, workspace, alice, bob)

    await hub.reconciler.move_task(
        db_session, as_current_user(alice), _move(workspace, t1, workspace.todo, workspace.doing), connection=a,
    )

    # Observer: optimistic then confirmed. Initiator: confirmation only.
    assert [e.get("optimistic", False) for e in b.events("task:moved")] == [True, False]
    assert [e.get("confirmed", False) for e in b.events("task:moved")] == [False, True]
    assert len(a.events("task:moved")) == 1
    assert a.events("task:moved")[0]["confirmed"] is True
    assert a.events("task:moved")[0]["task"]["columnId"] == workspace.doing


@pytest.mark.asyncio
async def test_rest_move_skips_every_socket_of_initiator(hub, db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    a, b = await _join(hub, db_session, workspace, alice, bob)

    await hub.reconciler.move_task(db_session, as_current_user(alice), _move(workspace, t1, workspace.todo, workspace.done))

    assert [e.get("optimistic", False) for e in a.events("task:moved")] == [False]
    assert [e.get("optimistic", False) for e in b.events("task:moved")] == [True, False]


@pytest.mark.asyncio
async def test_position_past_end_appends(hub, db_session, workspace, alice):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    (d1,) = await _seed(db_session, workspace, alice, ["Done A"], workspace.done)

    result = await hub.reconciler.move_task(
        db_session, as_current_user(alice), _move(workspace, t1, workspace.todo, workspace.done, 42),
    )

    assert result["position"] == 1
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.done] == [d1, t1]


@pytest.mark.asyncio
async def test_reorder_within_column(hub, db_session, workspace, alice):
    t1, t2, t3 = await _seed(db_session, workspace, alice, ["A", "B", "C"], workspace.todo)

    result = await hub.reconciler.move_task(
        db_session, as_current_user(alice), _move(workspace, t3, workspace.todo, workspace.todo, 0),
    )

    assert result["position"] == 0
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == [t3, t1, t2]


@pytest.mark.asyncio
async def test_stale_from_column_still_leaves_one_copy(hub, db_session, workspace, alice):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)

    # Client believes the card is in Done; it is actually in To Do
    await hub.reconciler.move_task(
        db_session, as_current_user(alice), _move(workspace, t1, workspace.done, workspace.doing),
    )

    lists = await column_lists(db_session, workspace.board_id)
    holders = [cid for cid, ids in lists.items() if t1 in ids]
    assert holders == [workspace.doing]


@pytest.mark.asyncio
async def test_concurrent_moves_never_duplicate(hub, db_session, session_factory, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Contended"], workspace.todo)
    alice_user, bob_user = as_current_user(alice), as_current_user(bob)

    async def move(user, to_column):
        async with session_factory() as db:
            return await hub.reconciler.move_task(db, user, _move(workspace, t1, workspace.todo, to_column))

    await asyncio.gather(move(alice_user, workspace.doing), move(bob_user, workspace.done))

    lists = await column_lists(db_session, workspace.board_id)
    holders = [cid for cid, ids in lists.items() if t1 in ids]
    assert len(holders) == 1
    assert sum(ids.count(t1) for ids in lists.values()) == 1


@pytest.mark.asyncio
async def test_outsider_move_is_never_broadcast(hub, db_session, workspace, alice, carol):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    (a,) = await _join(hub, db_session, workspace, alice)

    with pytest.raises(AccessDenied):
        await hub.reconciler.move_task(
            db_session, as_current_user(carol), _move(workspace, t1, workspace.todo, workspace.done),
        )

    assert a.sent == []
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == [t1]


@pytest.mark.asyncio
async def test_missing_destination_reverts(hub, db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    a, b = await _join(hub, db_session, workspace, alice, bob)

    with pytest.raises(ColumnNotFound):
        await hub.reconciler.move_task(
            db_session, as_current_user(alice), _move(workspace, t1, workspace.todo, "gone"), connection=a,
        )

    assert b.types() == ["task:moved", "move-failed"]
    failed = b.events("move-failed")[0]
    assert failed["taskId"] == t1
    assert failed["error"] == "Destination column not found"
    # The initiator rolls back its local drop too
    assert a.types() == ["move-failed"]
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == [t1]


@pytest.mark.asyncio
async def test_persistence_failure_reverts_without_duplicates(db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    alice_user, bob_user = as_current_user(alice), as_current_user(bob)
    hub = create_hub(gateway_cls=FailingCommitGateway)
    a, b = await _join(hub, db_session, workspace, alice_user, bob_user)

    with pytest.raises(PersistenceFailure):
        await hub.reconciler.move_task(
            db_session, alice_user, _move(workspace, t1, workspace.todo, workspace.done), connection=a,
        )

    assert b.types() == ["task:moved", "move-failed"]
    assert b.events("move-failed")[0]["fromColumnId"] == workspace.todo
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == [t1]
    assert lists[workspace.done] == []


@pytest.mark.asyncio
async def test_cancelled_move_still_emits_move_failed(db_session, workspace, alice, bob):
    (t1,) = await _seed(db_session, workspace, alice, ["Card"], workspace.todo)
    alice_user, bob_user = as_current_user(alice), as_current_user(bob)
    entered = asyncio.Event()
    hub = create_hub(gateway_cls=stalling_gateway(entered))
    a, b = await _join(hub, db_session, workspace, alice_user, bob_user)

    job = asyncio.create_task(hub.reconciler.move_task(
        db_session, alice_user, _move(workspace, t1, workspace.todo, workspace.done), connection=a,
    ))
    await asyncio.wait_for(entered.wait(), timeout=5)
    job.cancel()
    with pytest.raises(asyncio.CancelledError):
        await job

    assert b.types() == ["task:moved", "move-failed"]
    assert b.events("move-failed")[0]["error"] == "Move cancelled"
    assert not hub.locks.get(workspace.board_id).locked()
    lists = await column_lists(db_session, workspace.board_id)
    assert lists[workspace.todo] == [t1]
