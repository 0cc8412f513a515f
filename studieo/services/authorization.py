"""Single authorization check used at the top of every lifecycle operation."""

import enum
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studieo.exceptions import (
    AuthenticationException,
    AuthorizationException,
    ResourceNotFoundException,
)
from studieo.models.application import Application
from studieo.models.project import Project
from studieo.models.team_member import TeamMember
from studieo.models.user import User, UserRole
from studieo.services import store


class Relationship(str, enum.Enum):
    MEMBER = "member"     # any TeamMember row, lead included
    LEAD = "lead"
    COMPANY = "company"   # a user of the company that owns the project
    PARTY = "party"       # any of the above


@dataclass
class AccessContext:
    caller: User
    application: Application
    project: Project
    member: Optional[TeamMember]


async def authorize(
    db: AsyncSession,
    caller_id: Optional[str],
    application_id: str,
    relationship: Relationship,
    lock: bool = False,
) -> AccessContext:
    """Check the caller's relationship to an application against stored rows.

    With ``lock=True`` the application row is selected ``FOR UPDATE`` so the
    rest of the transaction sees a stable status.
    """
    if not caller_id:
        raise AuthenticationException()

    caller = await db.get(User, caller_id)
    if caller is None:
        raise AuthenticationException("Unknown user")

    if lock:
        application = await store.lock_application(db, application_id)
    else:
        application = await db.get(Application, application_id)
    if application is None:
        raise ResourceNotFoundException("Application", application_id)

    project = await db.get(Project, application.project_id)
    if project is None:
        raise ResourceNotFoundException("Project", application.project_id)

    member_result = await db.execute(
        select(TeamMember).where(
            TeamMember.application_id == application_id,
            TeamMember.student_id == caller_id,
        )
    )
    member = member_result.scalar_one_or_none()

    is_lead = application.team_lead_id == caller.id
    is_company = (
        caller.role == UserRole.COMPANY
        and caller.company_id is not None
        and caller.company_id == project.company_id
    )

    if relationship == Relationship.MEMBER and member is None:
        raise AuthorizationException("You are not a member of this application")
    if relationship == Relationship.LEAD and not is_lead:
        raise AuthorizationException("Only the team lead can do this")
    if relationship == Relationship.COMPANY and not is_company:
        raise AuthorizationException("Only members of the project's company can review this application")
    if relationship == Relationship.PARTY and not (member or is_lead or is_company):
        raise AuthorizationException("Access denied")

    return AccessContext(caller=caller, application=application, project=project, member=member)
