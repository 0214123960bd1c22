# rooms.py — Board room registry (in-memory presence)
# - board_id -> {connection_id -> connection}
# - A connection sits in at most one board room; joining another board leaves the first
# - Membership is updated before any event about it is awaited
# - Emitting never raises: a connection whose send fails is dropped from its room,
#   and user:left goes out to that room once the current fan-out finishes
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from access import has_access
from auth import CurrentUser
from errors import NotFound
from events import BOARD_JOINED, ERROR, USER_JOINED, USER_LEFT, now_iso
from gateway import PersistenceGateway

logger = logging.getLogger("flowboard.rooms")


class Connection(Protocol):
    id: str
    user: CurrentUser

    async def send_json(self, message: Dict[str, Any]) -> None: ...


class BoardRoomRegistry:
    """Tracks which connections are looking at which board"""

    def __init__(self, gateway_cls=PersistenceGateway):
        self.gateway_cls = gateway_cls
        self._rooms: Dict[str, Dict[str, Connection]] = {}
        self._current: Dict[str, str] = {}  # connection_id -> board_id
        self._board_projects: Dict[str, str] = {}  # board_id -> project_id
        self._connections: Dict[str, Connection] = {}
        self._departed: List[Tuple[Connection, str]] = []  # dropped, user:left not yet sent

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    async def disconnect(self, connection: Connection) -> None:
        board_id = self._current.get(connection.id)
        if board_id:
            await self.leave(connection, board_id)
        self._connections.pop(connection.id, None)
        logger.info(f"Connection closed: {connection.id[:8]} user={connection.user.username}")

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def join(self, db: AsyncSession, connection: Connection, board_id: str) -> bool:
        gateway = self.gateway_cls(db)
        try:
            board = await gateway.get_board(board_id)
            project = await gateway.get_project(board.project_id)
        except NotFound:
            await self.emit_to_connection(connection, ERROR, {"message": "Board not found"})
            return False

        if not has_access(connection.user.id, project):
            logger.info(f"Join refused: user={connection.user.username} board={board_id[:8]}")
            await self.emit_to_connection(connection, ERROR, {"message": "Access denied to this board"})
            return False

        previous = self._current.get(connection.id)
        if previous == board_id:
            await self._send_joined(connection, board_id)
            return True
        left_previous = bool(previous) and self._remove(connection, previous)

        self._rooms.setdefault(board_id, {})[connection.id] = connection
        self._current[connection.id] = board_id
        self._board_projects[board_id] = project.id
        logger.info(f"User {connection.user.username} joined board {board_id[:8]}")

        if left_previous:
            await self._announce_left(connection, previous)
        await self.emit_to_board(board_id, USER_JOINED, {
            "userId": connection.user.id,
            "username": connection.user.username,
            "boardId": board_id,
            "timestamp": now_iso(),
        }, exclude=connection)
        await self._send_joined(connection, board_id)
        return True

    async def _send_joined(self, connection: Connection, board_id: str) -> None:
        await self.emit_to_connection(connection, BOARD_JOINED, {
            "boardId": board_id,
            "members": self.members(board_id),
            "timestamp": now_iso(),
        })

    async def leave(self, connection: Connection, board_id: str) -> bool:
        if not self._remove(connection, board_id):
            return False
        await self._announce_left(connection, board_id)
        return True

    async def _announce_left(self, connection: Connection, board_id: str) -> None:
        logger.info(f"User {connection.user.username} left board {board_id[:8]}")
        await self.emit_to_board(board_id, USER_LEFT, {
            "userId": connection.user.id,
            "username": connection.user.username,
            "boardId": board_id,
            "timestamp": now_iso(),
        })

    def _remove(self, connection: Connection, board_id: str) -> bool:
        room = self._rooms.get(board_id)
        if not room or connection.id not in room:
            return False
        del room[connection.id]
        if not room:
            del self._rooms[board_id]
            self._board_projects.pop(board_id, None)
        if self._current.get(connection.id) == board_id:
            del self._current[connection.id]
        return True

    def _drop(self, connection: Connection) -> None:
        board_id = self._current.get(connection.id)
        if board_id and self._remove(connection, board_id):
            self._departed.append((connection, board_id))
        self._connections.pop(connection.id, None)

    async def _announce_departed(self) -> None:
        # Announcing can drop further connections; the loop picks those up too
        while self._departed:
            connection, board_id = self._departed.pop(0)
            await self._announce_left(connection, board_id)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def _send(self, connection: Connection, message: Dict[str, Any]) -> bool:
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Dropping connection {connection.id[:8]} after failed send: {e}")
            self._drop(connection)
            return False

    async def emit_to_connection(self, connection: Connection, event: str, payload: Dict[str, Any]) -> None:
        await self._send(connection, {"type": event, **payload})
        await self._announce_departed()

    async def emit_to_board(
        self,
        board_id: str,
        event: str,
        payload: Dict[str, Any],
        exclude: Optional[Connection] = None,
        exclude_user: Optional[str] = None,
    ) -> int:
        """Send to every member of a board room; returns the number of deliveries"""
        message = {"type": event, **payload}
        targets = list(self._rooms.get(board_id, {}).values())
        delivered = 0
        for conn in targets:
            if exclude is not None and conn.id == exclude.id:
                continue
            if exclude_user and conn.user.id == exclude_user:
                continue
            if await self._send(conn, message):
                delivered += 1
        await self._announce_departed()
        return delivered

    async def emit_to_project(
        self,
        project_id: str,
        event: str,
        payload: Dict[str, Any],
    ) -> int:
        """Send once to every connection on any board of the project"""
        message = {"type": event, **payload}
        targets: Dict[str, Connection] = {}
        for board_id, pid in list(self._board_projects.items()):
            if pid != project_id:
                continue
            for conn in self._rooms.get(board_id, {}).values():
                targets[conn.id] = conn
        delivered = 0
        for conn in targets.values():
            if await self._send(conn, message):
                delivered += 1
        await self._announce_departed()
        return delivered

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def members(self, board_id: str) -> List[dict]:
        return [
            {"userId": c.user.id, "username": c.user.username, "connectionId": c.id}
            for c in self._rooms.get(board_id, {}).values()
        ]

    def current_board(self, connection: Connection) -> Optional[str]:
        return self._current.get(connection.id)

    def is_member(self, connection: Connection, board_id: str) -> bool:
        return connection.id in self._rooms.get(board_id, {})

    def stats(self) -> dict:
        return {
            "total_connections": len(self._connections),
            "active_boards": len(self._rooms),
            "board_members": sum(len(room) for room in self._rooms.values()),
        }
