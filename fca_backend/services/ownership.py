"""Ownership guard: the tenant boundary for every sync write."""
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from fca_shared.enums import UserRole
from fca_shared.models import Project
from .errors import AccessDenied, StorageError

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "Project not found or access denied"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller as resolved by the auth blueprint."""
    user_id: int
    company: Optional[str] = None
    role: UserRole = UserRole.USER
    name: Optional[str] = None

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class ProjectHandle:
    id: int
    name: str
    company: Optional[str]


class OwnershipGuard:
    """Confirms a caller may write into a project's namespace.

    Admins may write anywhere. Other callers need the project's company to
    match theirs, or must own the project. A missing project and a foreign
    project produce the same AccessDenied so existence is not leaked.
    """

    def __init__(self, session):
        self.session = session

    def authorize(self, caller, project_id):
        """Return a ProjectHandle or raise AccessDenied."""
        try:
            project = self.session.get(Project, project_id)
        except SQLAlchemyError as e:
            logger.error(f"Project lookup failed for project_id={project_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to look up project {project_id}") from e

        if project is None or not self._may_write(caller, project):
            logger.warning(
                f"Access denied: user_id={caller.user_id} company={caller.company!r} project_id={project_id}"
            )
            raise AccessDenied(ACCESS_DENIED_MESSAGE)

        return ProjectHandle(id=project.id, name=project.name, company=project.company)

    @staticmethod
    def _may_write(caller, project):
        if caller.is_admin:
            return True
        if project.company and caller.company and project.company == caller.company:
            return True
        return project.owner_id is not None and project.owner_id == caller.user_id
