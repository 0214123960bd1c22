# schemas.py — Request payloads shared by REST routers and the WebSocket loop
# Clients speak camelCase; fields are also accepted by their Python names.
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError

Priority = Literal["low", "medium", "high"]

M = TypeVar("M", bound=BaseModel)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_payload(schema: Type[M], data: Any) -> M:
    """Validate a raw socket payload, reporting the first problem as a ValidationError"""
    if not isinstance(data, dict):
        raise ValidationError(f"Expected an object for {schema.__name__}")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", [])) or "payload"
        raise ValidationError(f"{field}: {err.get('msg', 'invalid value')}")


# ============================================================
# PROJECTS
# ============================================================

class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    color: str = "#3B82F6"


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = None


class AddMembers(CamelModel):
    member_ids: List[str] = Field(..., min_length=1)


# ============================================================
# BOARDS & COLUMNS
# ============================================================

class ColumnIn(CamelModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    color: str = "#6B7280"
    order: Optional[int] = None
    task_ids: Optional[List[str]] = None


class BoardCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    project_id: str
    columns: Optional[List[ColumnIn]] = None


class BoardUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)


class ColumnsUpdate(CamelModel):
    columns: List[ColumnIn] = Field(..., min_length=1)


# ============================================================
# TASKS
# ============================================================

class Label(CamelModel):
    name: str
    color: str = "#6B7280"


class TaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Priority = "medium"
    project_id: str
    board_id: str
    column_id: Optional[str] = None
    status: Optional[str] = None  # resolved to a column when column_id is absent
    collection_id: Optional[str] = None
    assignee_id: Optional[str] = None
    labels: List[Label] = []
    due_date: Optional[datetime] = None
    time_tracked: int = Field(0, ge=0)
    dependencies: List[str] = []


class SubtaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Priority = "medium"
    column_id: Optional[str] = None
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    labels: List[Label] = []
    due_date: Optional[datetime] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    column_id: Optional[str] = None
    collection_id: Optional[str] = None
    assignee_id: Optional[str] = None
    labels: Optional[List[Label]] = None
    due_date: Optional[datetime] = None
    time_tracked: Optional[int] = Field(None, ge=0)
    dependencies: Optional[List[str]] = None

    @field_validator("title", "priority", "labels", "time_tracked", "dependencies")
    @classmethod
    def reject_null(cls, v):
        # Omit a field to leave it unchanged; these columns have no null state
        if v is None:
            raise ValueError("may not be null")
        return v

    def patch(self) -> Dict[str, Any]:
        """Fields the client actually sent, keyed by attribute name"""
        return self.model_dump(exclude_unset=True)

    def changes(self) -> Dict[str, Any]:
        """Same fields keyed the way clients send them"""
        return self.model_dump(exclude_unset=True, mode="json", by_alias=True)


class MoveTaskBody(CamelModel):
    from_column_id: str = Field(..., min_length=1)
    to_column_id: str = Field(..., min_length=1)
    board_id: str = Field(..., min_length=1)
    position: Optional[int] = None


class MoveTask(MoveTaskBody):
    task_id: str = Field(..., min_length=1)


# ============================================================
# COLLECTIONS
# ============================================================

class CollectionCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    project_id: str
    description: Optional[str] = None
    color: str = "#6366F1"


class CollectionUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = None
    order: Optional[int] = None
    is_archived: Optional[bool] = None


class CollectionReorder(CamelModel):
    project_id: str
    collection_ids: List[str]
