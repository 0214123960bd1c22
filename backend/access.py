# access.py — Project-scoped access checks
# A user may touch anything inside a project when they created it or are listed
# as a member. Ownership (creator only) gates destructive project/board actions.
from errors import AccessDenied
from models import Project


def has_access(user_id: str, project: Project) -> bool:
    if not user_id or project is None:
        return False
    return user_id == project.creator_id or user_id in (project.member_ids or [])


def is_owner(user_id: str, project: Project) -> bool:
    if not user_id or project is None:
        return False
    return user_id == project.creator_id


def require_access(user_id: str, project: Project, message: str = None) -> None:
    if not has_access(user_id, project):
        raise AccessDenied(message)


def require_owner(user_id: str, project: Project, message: str = None) -> None:
    if not is_owner(user_id, project):
        raise AccessDenied(message or "Only the project owner can perform this action")
