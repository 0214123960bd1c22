# realtime.py — Wiring for the collaboration core
# The registry, broadcaster and reconciler share one room registry and one set of
# board locks. A hub lives on app.state; REST handlers get it through get_hub and
# the WebSocket endpoint reads websocket.app.state.hub.
from dataclasses import dataclass

from fastapi import Request

from broadcaster import BoardLocks, MutationBroadcaster
from gateway import PersistenceGateway
from reconciler import DragDropReconciler
from rooms import BoardRoomRegistry


@dataclass
class RealtimeHub:
    rooms: BoardRoomRegistry
    locks: BoardLocks
    broadcaster: MutationBroadcaster
    reconciler: DragDropReconciler


def create_hub(gateway_cls=PersistenceGateway) -> RealtimeHub:
    rooms = BoardRoomRegistry(gateway_cls=gateway_cls)
    locks = BoardLocks()
    return RealtimeHub(
        rooms=rooms,
        locks=locks,
        broadcaster=MutationBroadcaster(rooms, locks, gateway_cls=gateway_cls),
        reconciler=DragDropReconciler(rooms, locks, gateway_cls=gateway_cls),
    )


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub
