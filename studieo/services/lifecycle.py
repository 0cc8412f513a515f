"""
Application lifecycle engine.

Owns every ``status`` / ``invite_status`` transition for applications and
their team members. Each public operation

    1. authorizes the caller against stored rows,
    2. mutates state inside a single transaction,
    3. dispatches notifications only after that transaction commits.

Business failures come back as ``ActionResult`` values instead of exceptions.
"""

import asyncio
import functools
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studieo.config import settings
from studieo.exceptions import (
    AuthenticationException,
    AuthorizationException,
    LifecycleException,
    ResourceNotFoundException,
    StateConflictException,
    ValidationException,
)
from studieo.models.application import Application, ApplicationStatus
from studieo.models.company import Company
from studieo.models.project import Project, ProjectAccessType, ProjectStatus
from studieo.models.team_member import InviteStatus, TeamMember
from studieo.models.user import User, UserRole
from studieo.schemas.application import (
    ActionResult,
    ApplicationOut,
    ErrorKind,
    StudentLimits,
    TeamMemberOut,
)
from studieo.services import store
from studieo.services.authorization import Relationship, authorize
from studieo.services.email_templates import NotificationTemplate
from studieo.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

STUDENT_DASHBOARD = "/student/dashboard"

TRANSIENT_ERRORS = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)


def lifecycle_operation(func):
    """Convert lifecycle and store failures raised by ``func`` into an ``ActionResult``."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> ActionResult:
        try:
            return await func(*args, **kwargs)
        except LifecycleException as e:
            return ActionResult.fail(e.kind, str(e))
        except IntegrityError as e:
            logger.warning(f"{func.__name__}: conflicting write: {e.orig}")
            return ActionResult.fail(
                ErrorKind.STATE_CONFLICT,
                "The application was changed by another request. Please try again.",
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"{func.__name__}: store unavailable: {e}")
            return ActionResult.fail(ErrorKind.TRANSIENT, str(e) or "The store did not respond in time")

    return wrapper


class ApplicationLifecycle:
    """State machine for team applications.

    PENDING -> SUBMITTED -> ACCEPTED | REJECTED, with withdrawal and disbanding
    deleting the application from PENDING or SUBMITTED.
    """

    def __init__(self, session_factory: async_sessionmaker, notifier: NotificationDispatcher):
        self._session_factory = session_factory
        self._notifier = notifier

    # ═══════════════════════════════════════════════════════════
    #  Queries
    # ═══════════════════════════════════════════════════════════

    @lifecycle_operation
    async def student_limits(self, caller_id: Optional[str]) -> ActionResult:
        """Active projects (accepted) and active applications (pending/submitted) led by a student."""
        if not caller_id:
            raise AuthenticationException()
        async with self._session_factory() as db:
            limits = await self._limits(db, caller_id)
        return ActionResult.ok(limits=limits)

    async def _limits(self, db: AsyncSession, student_id: str) -> StudentLimits:
        active_projects = await store.count_led_applications(
            db, student_id, [ApplicationStatus.ACCEPTED]
        )
        active_applications = await store.count_led_applications(
            db, student_id, [ApplicationStatus.PENDING, ApplicationStatus.SUBMITTED]
        )

        errors = []
        if active_projects >= settings.MAX_ACTIVE_PROJECTS:
            errors.append(f"You have reached the maximum of {settings.MAX_ACTIVE_PROJECTS} active projects")
        if active_applications >= settings.MAX_ACTIVE_APPLICATIONS:
            errors.append(f"You have reached the maximum of {settings.MAX_ACTIVE_APPLICATIONS} active applications")

        return StudentLimits(
            can_apply=not errors,
            active_projects=active_projects,
            active_applications=active_applications,
            errors=errors,
        )

    @lifecycle_operation
    async def get_application(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        async with self._session_factory() as db:
            ctx = await authorize(db, caller_id, application_id, Relationship.PARTY)
            members = await store.list_members(db, application_id)

        application = ctx.application
        view = ApplicationOut(
            id=application.id,
            project_id=application.project_id,
            project_title=ctx.project.title,
            team_lead_id=application.team_lead_id,
            status=application.status.value,
            design_doc_url=application.design_doc_url,
            answers=application.answers,
            created_at=application.created_at,
            submitted_at=application.submitted_at,
            team_members=[
                TeamMemberOut(
                    student_id=m.student_id,
                    name=m.name,
                    email=m.email,
                    is_lead=m.is_lead,
                    invite_status=m.invite_status.value,
                    confirmed_at=m.confirmed_at,
                )
                for m in members
            ],
        )
        return ActionResult.ok(application_id=application_id, application=view)

    # ═══════════════════════════════════════════════════════════
    #  Team assembly
    # ═══════════════════════════════════════════════════════════

    @lifecycle_operation
    async def create_application(
        self,
        caller_id: Optional[str],
        project_id: str,
        team_member_ids: List[str],
        design_doc_url: Optional[str] = None,
        answers: Optional[List[Dict[str, str]]] = None,
    ) -> ActionResult:
        """Create a team application and invite every listed student to it.

        The lead's own seat is created already confirmed. A solo application
        has nobody left to confirm and is submitted right away.
        """
        if not caller_id:
            raise AuthenticationException()

        invitee_ids = list(team_member_ids or [])
        if len(set(invitee_ids)) != len(invitee_ids):
            raise ValidationException("Each team member can only be invited once")
        if caller_id in invitee_ids:
            raise ValidationException("The team lead is added to the team automatically")

        async with self._session_factory() as db:
            async with db.begin():
                lead = await db.get(User, caller_id)
                if lead is None:
                    raise AuthenticationException("Unknown user")
                if lead.role != UserRole.STUDENT:
                    raise AuthorizationException("Only students can apply to projects")

                limits = await self._limits(db, caller_id)
                if not limits.can_apply:
                    raise ValidationException(". ".join(limits.errors))

                if await store.find_led_application(db, project_id, caller_id) is not None:
                    raise StateConflictException("You have already applied to this project")

                project = await db.get(Project, project_id)
                if project is None:
                    raise ResourceNotFoundException("Project", project_id)
                if project.status != ProjectStatus.ACCEPTING:
                    raise StateConflictException("This project is not accepting applications")

                # Team size counts the lead
                team_size = 1 + len(invitee_ids)
                if project.min_students and team_size < project.min_students:
                    raise ValidationException(f"Team size must be at least {project.min_students} members")
                if project.max_students and team_size > project.max_students:
                    raise ValidationException(f"Team size cannot exceed {project.max_students} members")

                invitees: List[User] = []
                if invitee_ids:
                    result = await db.execute(
                        select(User).where(User.id.in_(invitee_ids), User.role == UserRole.STUDENT)
                    )
                    invitees = list(result.scalars().all())
                    if len(invitees) != len(invitee_ids):
                        raise ValidationException("Every team member must be a registered student")

                application = Application(
                    project_id=project_id,
                    team_lead_id=caller_id,
                    status=ApplicationStatus.PENDING,
                    design_doc_url=design_doc_url,
                    answers_json=json.dumps(answers or []),
                )
                db.add(application)
                await db.flush()  # to get application.id

                db.add(TeamMember(
                    application_id=application.id,
                    student_id=caller_id,
                    is_lead=True,
                    invite_status=InviteStatus.ACCEPTED,
                    confirmed_at=datetime.now(timezone.utc),
                ))
                db.add_all([
                    TeamMember(
                        application_id=application.id,
                        student_id=student.id,
                        is_lead=False,
                        invite_status=InviteStatus.PENDING,
                    )
                    for student in invitees
                ])

                application_id = application.id
                lead_name = lead.name or "Team lead"
                project_title = project.title

        logger.info(f"Application {application_id} created by {caller_id} with {len(invitees)} invitee(s)")

        for student in invitees:
            self._notify(NotificationTemplate.TEAM_INVITE, {
                "to_email": student.email,
                "to_name": student.name or "Student",
                "inviter_name": lead_name,
                "project_title": project_title,
                "application_id": application_id,
            })

        if invitees:
            return ActionResult.ok(application_id=application_id)

        # Solo application (team lead only)
        async with self._session_factory() as db:
            async with db.begin():
                application = await store.lock_application(db, application_id)
                if application is None:
                    raise ResourceNotFoundException("Application", application_id)
                await self._transition_to_submitted(db, application)
        decision = await self._follow_up_submission(application_id)
        return self._submission_result(application_id, decision, auto_submitted=True)

    @lifecycle_operation
    async def confirm_membership(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        """Confirm the caller's seat; the last confirmation submits the application.

        The confirmation, the consensus count and the automatic PENDING ->
        SUBMITTED move share one transaction. If the application cannot be
        submitted (e.g. the project stopped accepting), the confirmation still
        stands and the application stays PENDING for a manual submit.
        """
        auto_submitted = False
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.MEMBER, lock=True)
                if ctx.application.is_decided:
                    raise StateConflictException("This application has already been decided")
                if ctx.member.invite_status == InviteStatus.ACCEPTED:
                    raise StateConflictException("You have already confirmed your participation")

                outcome = await store.confirm_member(db, application_id, ctx.caller.id)
                if not outcome.confirmed:
                    raise StateConflictException("You have already confirmed your participation")

                if outcome.unconfirmed == 0 and ctx.application.status == ApplicationStatus.PENDING:
                    auto_submitted = await self._auto_submit(db, ctx.application)

                lead = await db.get(User, ctx.application.team_lead_id)
                member_name = ctx.caller.name or "A team member"
                project_title = ctx.project.title

        if lead is not None and lead.id != ctx.caller.id:
            self._notify(NotificationTemplate.TEAM_MEMBER_CONFIRMED, {
                "to_email": lead.email,
                "team_lead_name": lead.name or "Team lead",
                "member_name": member_name,
                "project_title": project_title,
                "application_id": application_id,
            })

        decision = None
        if auto_submitted:
            decision = await self._follow_up_submission(application_id)

        return ActionResult.ok(
            application_id=application_id,
            auto_submitted=auto_submitted,
            auto_decision=decision.value if decision else None,
        )

    @lifecycle_operation
    async def decline_membership(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        """Decline the caller's seat, which disbands the whole application."""
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.MEMBER, lock=True)
                if ctx.application.is_decided:
                    raise StateConflictException("This application has already been decided")

                decliner_name = ctx.caller.name or "A team member"
                result = await store.disband_application(db, application_id, ctx.caller.id)
                if not result.success:
                    raise StateConflictException(result.error or "Failed to disband application")

        logger.info(f"Application {application_id} disbanded after {ctx.caller.id} declined")

        for member in result.team_members:
            self._notify(NotificationTemplate.APPLICATION_DISBANDED, {
                "to_email": member.email,
                "to_name": member.name or "Student",
                "project_title": result.project_title or "your project",
                "declined_by_name": decliner_name,
                "is_declined_by": member.student_id == ctx.caller.id,
            })

        return ActionResult.redirect(STUDENT_DASHBOARD, application_id=application_id)

    # ═══════════════════════════════════════════════════════════
    #  Submission
    # ═══════════════════════════════════════════════════════════

    @lifecycle_operation
    async def submit(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        """Lead submits the application, whether or not every member has confirmed yet."""
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.LEAD, lock=True)
                await self._transition_to_submitted(db, ctx.application)

        logger.info(f"Application {application_id} submitted by {ctx.caller.id}")
        decision = await self._follow_up_submission(application_id)
        return self._submission_result(application_id, decision)

    async def _transition_to_submitted(self, db: AsyncSession, application: Application) -> None:
        """PENDING -> SUBMITTED for an application locked by the caller's transaction."""
        if application.status == ApplicationStatus.SUBMITTED:
            raise StateConflictException("Application has already been submitted")
        if application.is_decided:
            raise StateConflictException("This application has already been decided")

        if await store.count_members(db, application.id) == 0:
            raise ValidationException("Application has no team members")

        project = await db.get(Project, application.project_id)
        if project is None or project.status != ProjectStatus.ACCEPTING:
            raise StateConflictException("This project is no longer accepting applications")

        moved = await store.transition_status(
            db,
            application.id,
            [ApplicationStatus.PENDING],
            ApplicationStatus.SUBMITTED,
            submitted_at=datetime.now(timezone.utc),
        )
        if not moved:
            raise StateConflictException("Application has already been submitted")

    async def _auto_submit(self, db: AsyncSession, application: Application) -> bool:
        try:
            await self._transition_to_submitted(db, application)
        except LifecycleException as e:
            logger.warning(f"Auto-submit skipped for application {application.id}: {e}")
            return False
        logger.info(f"All team members confirmed; application {application.id} auto-submitted")
        return True

    async def _after_submission(self, application_id: str) -> Optional[ApplicationStatus]:
        """Notify the team and the company; decide OPEN-project applications immediately."""
        async with self._session_factory() as db:
            application = await db.get(Application, application_id)
            if application is None:
                return None
            project = await db.get(Project, application.project_id)
            if project is None:
                return None
            company = await db.get(Company, project.company_id)
            creator = await db.get(User, project.created_by_id)
            members = await store.list_members(db, application_id)

        company_name = company.name if company else "the company"
        lead_name = next((m.name for m in members if m.is_lead and m.name), "Team lead")

        for member in members:
            self._notify(NotificationTemplate.APPLICATION_SUBMITTED, {
                "to_email": member.email,
                "to_name": member.name or "Student",
                "project_title": project.title,
                "company_name": company_name,
                "application_id": application_id,
                "team_lead_name": lead_name,
                "is_lead": member.is_lead,
                "needs_confirmation": member.invite_status == InviteStatus.PENDING,
            })

        if project.access_type != ProjectAccessType.OPEN:
            if creator is not None:
                self._notify(NotificationTemplate.APPLICATION_NEW, {
                    "to_email": creator.email,
                    "company_name": company_name,
                    "project_title": project.title,
                    "project_id": project.id,
                    "team_lead_name": lead_name,
                    "team_size": len(members),
                })
            return None

        async with self._session_factory() as db:
            async with db.begin():
                decision = await store.decide_open_application(db, application_id, project.id)

        if decision is not None:
            logger.info(f"OPEN project {project.id}: application {application_id} automatically {decision.value}")
            self._notify_decision(decision, members, project, company_name, application_id)
        return decision

    async def _follow_up_submission(self, application_id: str) -> Optional[ApplicationStatus]:
        """Run ``_after_submission`` for a committed submission; failures are logged, not reported."""
        try:
            return await self._after_submission(application_id)
        except Exception:
            logger.exception(f"Follow-up after submitting application {application_id} failed")
            return None

    def _submission_result(
        self, application_id: str, decision: Optional[ApplicationStatus], auto_submitted: bool = False
    ) -> ActionResult:
        message = None
        if decision == ApplicationStatus.REJECTED:
            message = "This project is at capacity and automatically rejected your team."
        return ActionResult.ok(
            application_id=application_id,
            auto_submitted=auto_submitted,
            auto_decision=decision.value if decision else None,
            message=message,
        )

    # ═══════════════════════════════════════════════════════════
    #  Withdrawal & company decisions
    # ═══════════════════════════════════════════════════════════

    @lifecycle_operation
    async def withdraw(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        """Lead withdraws an undecided application; it is deleted, not archived."""
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.LEAD, lock=True)
                if ctx.application.is_decided:
                    raise StateConflictException("Only applications that have not been decided can be withdrawn")

                lead_name = ctx.caller.name or "Team lead"
                members = await store.terminate_application(db, application_id)

        logger.info(f"Application {application_id} withdrawn by {ctx.caller.id}")

        for member in members:
            if member.student_id == ctx.caller.id:
                continue  # Don't email the lead
            self._notify(NotificationTemplate.APPLICATION_WITHDRAWN, {
                "to_email": member.email,
                "to_name": member.name or "Student",
                "project_title": ctx.project.title,
                "team_lead_name": lead_name,
            })

        return ActionResult.redirect(STUDENT_DASHBOARD, application_id=application_id)

    @lifecycle_operation
    async def delete_application(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        """Company removes an application from its project in any status. Nobody is emailed."""
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.COMPANY, lock=True)
                status = ctx.application.status
                await store.terminate_application(db, application_id)

        logger.info(f"Application {application_id} ({status.value}) deleted by company user {ctx.caller.id}")
        return ActionResult.redirect(f"/company/projects/{ctx.project.id}", application_id=application_id)

    async def accept(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        return await self._decide(caller_id, application_id, ApplicationStatus.ACCEPTED)

    async def reject(self, caller_id: Optional[str], application_id: str) -> ActionResult:
        return await self._decide(caller_id, application_id, ApplicationStatus.REJECTED)

    @lifecycle_operation
    async def _decide(
        self, caller_id: Optional[str], application_id: str, decision: ApplicationStatus
    ) -> ActionResult:
        verb = "accepted" if decision == ApplicationStatus.ACCEPTED else "rejected"
        async with self._session_factory() as db:
            async with db.begin():
                ctx = await authorize(db, caller_id, application_id, Relationship.COMPANY, lock=True)
                if ctx.application.status != ApplicationStatus.SUBMITTED:
                    raise StateConflictException(f"Only submitted applications can be {verb}")
                if not await store.transition_status(db, application_id, [ApplicationStatus.SUBMITTED], decision):
                    raise StateConflictException(f"Only submitted applications can be {verb}")

                members = await store.list_members(db, application_id)
                company = await db.get(Company, ctx.project.company_id)

        logger.info(f"Application {application_id} {verb} by {ctx.caller.id}")
        company_name = company.name if company else "the company"
        self._notify_decision(decision, members, ctx.project, company_name, application_id)
        return ActionResult.ok(application_id=application_id)

    # ═══════════════════════════════════════════════════════════
    #  Notifications
    # ═══════════════════════════════════════════════════════════

    def _notify_decision(
        self,
        decision: ApplicationStatus,
        members: List[store.MemberContact],
        project: Project,
        company_name: str,
        application_id: str,
    ) -> None:
        for member in members:
            if decision == ApplicationStatus.ACCEPTED:
                self._notify(NotificationTemplate.APPLICATION_ACCEPTED, {
                    "to_email": member.email,
                    "to_name": member.name or "Student",
                    "project_title": project.title,
                    "company_name": company_name,
                    "contact_name": project.contact_name or "Company Contact",
                    "contact_email": project.contact_email or "",
                    "contact_role": project.contact_role or "Representative",
                    "application_id": application_id,
                })
            else:
                self._notify(NotificationTemplate.APPLICATION_REJECTED, {
                    "to_email": member.email,
                    "to_name": member.name or "Student",
                    "project_title": project.title,
                    "company_name": company_name,
                })

    def _notify(self, template: NotificationTemplate, params: Dict[str, Any]) -> None:
        """Hand a notification to the dispatcher without waiting on delivery."""
        try:
            self._notifier.dispatch(template, params)
        except Exception as e:
            logger.error(f"Could not dispatch {template.value} notification: {e}")
