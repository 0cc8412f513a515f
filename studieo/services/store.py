"""
Store procedures for applications and team members.

Every function here runs inside the caller's transaction
(``async with db.begin()``) and never commits on its own, so a sequence of
calls made under one transaction is applied all-or-nothing.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studieo.models.application import Application, ApplicationStatus
from studieo.models.project import Project
from studieo.models.team_member import InviteStatus, TeamMember
from studieo.models.user import User


@dataclass
class MemberContact:
    student_id: str
    name: Optional[str]
    email: str
    is_lead: bool
    invite_status: InviteStatus
    confirmed_at: Optional[datetime] = None


@dataclass
class DisbandResult:
    success: bool
    error: Optional[str] = None
    project_title: Optional[str] = None
    team_members: List[MemberContact] = field(default_factory=list)


@dataclass
class ConfirmOutcome:
    confirmed: bool
    unconfirmed: int


# ═══════════════════════════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════════════════════════

async def lock_application(db: AsyncSession, application_id: str) -> Optional[Application]:
    """Load an application row with ``FOR UPDATE`` (a no-op on SQLite)."""
    result = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_members(db: AsyncSession, application_id: str) -> List[MemberContact]:
    result = await db.execute(
        select(TeamMember, User)
        .join(User, TeamMember.student_id == User.id)
        .where(TeamMember.application_id == application_id)
        .order_by(TeamMember.is_lead.desc(), User.name)
    )
    return [
        MemberContact(
            student_id=member.student_id,
            name=user.name,
            email=user.email,
            is_lead=member.is_lead,
            invite_status=member.invite_status,
            confirmed_at=member.confirmed_at,
        )
        for member, user in result.all()
    ]


async def count_members(db: AsyncSession, application_id: str) -> int:
    result = await db.execute(
        select(func.count(TeamMember.id)).where(TeamMember.application_id == application_id)
    )
    return result.scalar() or 0


async def count_unconfirmed(db: AsyncSession, application_id: str) -> int:
    result = await db.execute(
        select(func.count(TeamMember.id)).where(
            TeamMember.application_id == application_id,
            TeamMember.invite_status != InviteStatus.ACCEPTED,
        )
    )
    return result.scalar() or 0


async def count_led_applications(
    db: AsyncSession, lead_id: str, statuses: Iterable[ApplicationStatus]
) -> int:
    result = await db.execute(
        select(func.count(Application.id)).where(
            Application.team_lead_id == lead_id,
            Application.status.in_(list(statuses)),
        )
    )
    return result.scalar() or 0


async def find_led_application(db: AsyncSession, project_id: str, lead_id: str) -> Optional[Application]:
    result = await db.execute(
        select(Application).where(
            Application.project_id == project_id,
            Application.team_lead_id == lead_id,
        )
    )
    return result.scalar_one_or_none()


# ═══════════════════════════════════════════════════════════════
#  Conditional writes
# ═══════════════════════════════════════════════════════════════

async def transition_status(
    db: AsyncSession,
    application_id: str,
    from_statuses: Iterable[ApplicationStatus],
    to_status: ApplicationStatus,
    **values,
) -> bool:
    """``UPDATE … WHERE status IN from_statuses``; True when this call moved the row."""
    result = await db.execute(
        update(Application)
        .where(
            Application.id == application_id,
            Application.status.in_(list(from_statuses)),
        )
        .values(status=to_status, **values)
    )
    return result.rowcount == 1


async def confirm_member(db: AsyncSession, application_id: str, student_id: str) -> ConfirmOutcome:
    """Accept one member's invite and report how many members are still unconfirmed.

    Lock the application first so concurrent confirmations serialize and
    exactly one of them sees the count reach zero.
    """
    result = await db.execute(
        update(TeamMember)
        .where(
            TeamMember.application_id == application_id,
            TeamMember.student_id == student_id,
            TeamMember.invite_status != InviteStatus.ACCEPTED,
        )
        .values(invite_status=InviteStatus.ACCEPTED, confirmed_at=datetime.now(timezone.utc))
    )
    unconfirmed = await count_unconfirmed(db, application_id)
    return ConfirmOutcome(confirmed=result.rowcount == 1, unconfirmed=unconfirmed)


async def decide_open_application(
    db: AsyncSession, application_id: str, project_id: str
) -> Optional[ApplicationStatus]:
    """Accept a submitted OPEN-project application while team slots remain, else reject it."""
    project_result = await db.execute(
        select(Project).where(Project.id == project_id).with_for_update()
    )
    project = project_result.scalar_one_or_none()
    if project is None:
        return None

    accepted_result = await db.execute(
        select(func.count(Application.id)).where(
            Application.project_id == project_id,
            Application.status == ApplicationStatus.ACCEPTED,
        )
    )
    accepted = accepted_result.scalar() or 0

    if project.max_teams is None or accepted < project.max_teams:
        decision = ApplicationStatus.ACCEPTED
    else:
        decision = ApplicationStatus.REJECTED

    moved = await transition_status(db, application_id, [ApplicationStatus.SUBMITTED], decision)
    return decision if moved else None


# ═══════════════════════════════════════════════════════════════
#  Termination
# ═══════════════════════════════════════════════════════════════

async def terminate_application(db: AsyncSession, application_id: str) -> List[MemberContact]:
    """Delete an application and its team members; return who was on the team."""
    members = await list_members(db, application_id)

    # Members first, then the application itself
    await db.execute(delete(TeamMember).where(TeamMember.application_id == application_id))
    await db.execute(delete(Application).where(Application.id == application_id))
    return members


async def disband_application(db: AsyncSession, application_id: str, student_id: str) -> DisbandResult:
    """Verify-then-delete for a declining member, in the caller's transaction."""
    application = await lock_application(db, application_id)
    if application is None:
        return DisbandResult(success=False, error="Application not found")

    member_result = await db.execute(
        select(TeamMember.id).where(
            TeamMember.application_id == application_id,
            TeamMember.student_id == student_id,
        )
    )
    if member_result.scalar_one_or_none() is None:
        return DisbandResult(success=False, error="You are not a member of this application")

    if application.status in (ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED):
        return DisbandResult(success=False, error="This application has already been decided")

    title_result = await db.execute(select(Project.title).where(Project.id == application.project_id))
    project_title = title_result.scalar_one_or_none()

    members = await terminate_application(db, application_id)
    return DisbandResult(success=True, project_title=project_title, team_members=members)
