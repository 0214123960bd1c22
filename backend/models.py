# models.py — Database models for Flowboard
# - UUID string primary keys everywhere
# - Projects own boards and collections; boards own ordered columns
# - A column's task_ids list is the source of truth for intra-column order;
#   Task.order is rewritten from it whenever the column changes

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Columns created for every new board unless the caller supplies its own
DEFAULT_COLUMNS = [
    {"name": "To Do", "color": "#EF4444", "order": 0},
    {"name": "In Progress", "color": "#F59E0B", "order": 1},
    {"name": "Done", "color": "#10B981", "order": 2},
]


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    """Top-level container; access to everything below is access to the project"""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=False, default="#3B82F6")
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    member_ids = Column(JSON, nullable=False, default=list)  # List of user IDs
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    boards = relationship("Board", back_populates="project")
    collections = relationship("Collection", back_populates="project")


# ============================================================
# KANBAN BOARD
# ============================================================

class Board(Base):
    """Kanban surface of a project"""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="boards")
    columns = relationship("BoardColumn", back_populates="board", order_by="BoardColumn.order")
    tasks = relationship("Task", back_populates="board")


class BoardColumn(Base):
    """Lane on a board; membership in task_ids doubles as the task's status"""
    __tablename__ = "board_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#6B7280")
    order = Column(Integer, nullable=False, default=0)
    task_ids = Column(JSON, nullable=False, default=list)  # Ordered task IDs

    board = relationship("Board", back_populates="columns")

    __table_args__ = (
        Index("idx_col_board_order", "board_id", "order"),
    )


class Collection(Base):
    """Epic-like grouping of tasks inside a project, independent of columns"""
    __tablename__ = "collections"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=False, default="#6366F1")
    order = Column(Integer, nullable=False, default=0)
    is_archived = Column(Boolean, default=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="collections")

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_collection_project_name"),
        Index("idx_collection_project_order", "project_id", "order"),
    )


class Task(Base):
    """Task card; position is encoded by its index in exactly one column's task_ids"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = Column(String, ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True, index=True)
    collection_id = Column(String, ForeignKey("collections.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM)
    order = Column(Integer, nullable=False, default=0)

    reporter_id = Column(String, ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)

    labels = Column(JSON, default=list)  # [{"name": ..., "color": ...}]
    due_date = Column(DateTime(timezone=True), nullable=True)
    time_tracked = Column(Integer, nullable=False, default=0)  # Minutes
    dependencies = Column(JSON, default=list)  # Task IDs

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    board = relationship("Board", back_populates="tasks")

    @property
    def is_subtask(self) -> bool:
        return self.parent_task_id is not None

    __table_args__ = (
        Index("idx_task_board_col", "board_id", "column_id"),
        Index("idx_task_collection_order", "collection_id", "order"),
        Index("idx_task_project_parent", "project_id", "parent_task_id"),
    )
