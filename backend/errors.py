# errors.py — Flowboard error taxonomy
# Every error carries an HTTP status and a stable FB-{DOMAIN}-{NUMBER} code so REST
# handlers and the WebSocket loop can report it the same way.
from typing import Optional


class FlowboardError(Exception):
    """Base class for all domain errors raised by the collaboration core"""

    status_code = 500
    code = "FB-SYS-001"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


# --- 401 ---
class AuthenticationRequired(FlowboardError):
    status_code = 401
    code = "FB-AUTH-001"
    default_message = "Authentication required"


# --- 403 ---
class AccessDenied(FlowboardError):
    status_code = 403
    code = "FB-AUTH-002"
    default_message = "Access denied to this project"


# --- 404 ---
class NotFound(FlowboardError):
    status_code = 404
    code = "FB-DB-001"
    default_message = "Record not found"


class ProjectNotFound(NotFound):
    code = "FB-DB-002"
    default_message = "Project not found"


class BoardNotFound(NotFound):
    code = "FB-DB-003"
    default_message = "Board not found"


class TaskNotFound(NotFound):
    code = "FB-DB-004"
    default_message = "Task not found"


class CollectionNotFound(NotFound):
    code = "FB-DB-005"
    default_message = "Collection not found"


class ColumnNotFound(NotFound):
    code = "FB-DB-006"
    default_message = "Column not found"


# --- 400 ---
class ValidationError(FlowboardError):
    status_code = 400
    code = "FB-VAL-001"
    default_message = "Invalid request payload"


class BoardMismatch(ValidationError):
    code = "FB-VAL-002"
    default_message = "Board does not belong to the specified project"


# --- 409 ---
class ConsistencyConflict(FlowboardError):
    status_code = 409
    code = "FB-SYNC-001"
    default_message = "Persisted board state contradicts the requested move"


# --- 500 ---
class PersistenceFailure(FlowboardError):
    status_code = 500
    code = "FB-DB-010"
    default_message = "Failed to persist changes"
