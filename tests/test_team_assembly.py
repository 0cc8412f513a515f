"""
Tests for assembling a team: creating an application, confirming and declining seats.
"""
import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from studieo.config import settings
from studieo.models.application import Application, ApplicationStatus
from studieo.models.project import Project, ProjectStatus
from studieo.models.team_member import InviteStatus, TeamMember
from studieo.schemas.application import ErrorKind
from studieo.services.lifecycle import ApplicationLifecycle
from studieo.services.notifications import NotificationDispatcher


class FailingTransport:
    async def __call__(self, recipient, subject, html):
        raise ConnectionError("SMTP server unreachable")


class UnreachableStore:
    """Session factory whose connections always fail."""

    def __call__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


class ExplodingDispatcher:
    def dispatch(self, template, params):
        raise RuntimeError("event loop is closing")


async def create_team(lifecycle, world, *invitees):
    result = await lifecycle.create_application(
        world["lead"].id,
        world["project"].id,
        [world[name].id for name in invitees],
        design_doc_url="https://docs.example/design",
        answers=[{"question_id": "q1", "answer": "We have shipped two routing tools"}],
    )
    assert result.success, result.error
    return result.application_id


class TestCreateApplication:
    """Test creating an application and sending invites"""

    @pytest.mark.asyncio
    async def test_creates_pending_application_with_confirmed_lead(self, lifecycle, world, reader, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice", "bob")

        application = await reader.application(application_id)
        assert application.status == ApplicationStatus.PENDING
        assert application.team_lead_id == world["lead"].id
        assert application.answers == [{"question_id": "q1", "answer": "We have shipped two routing tools"}]

        members = await reader.members(application_id)
        assert set(members) == {world["lead"].id, world["alice"].id, world["bob"].id}
        assert members[world["lead"].id].is_lead
        assert members[world["lead"].id].invite_status == InviteStatus.ACCEPTED
        assert members[world["lead"].id].confirmed_at is not None
        assert members[world["alice"].id].invite_status == InviteStatus.PENDING

        await notifier.drain()
        for name in ("alice", "bob"):
            sent = transport.to(world[name].email)
            assert len(sent) == 1
            assert sent[0][1] == "You've been invited to join a team for Warehouse Route Optimizer"
            assert "Lena Lead" in sent[0][2]
            assert f"/applications/{application_id}" in sent[0][2]
        assert transport.to(world["lead"].email) == []

    @pytest.mark.asyncio
    async def test_solo_application_is_submitted_immediately(self, lifecycle, world, reader, notifier, transport):
        result = await lifecycle.create_application(world["lead"].id, world["project"].id, [])

        assert result.success
        assert result.auto_submitted
        application = await reader.application(result.application_id)
        assert application.status == ApplicationStatus.SUBMITTED
        assert application.submitted_at is not None

        await notifier.drain()
        assert len(transport.to(world["lead"].email)) == 1
        assert len(transport.to(world["reviewer"].email)) == 1

    @pytest.mark.asyncio
    async def test_requires_authentication(self, lifecycle, world):
        result = await lifecycle.create_application(None, world["project"].id, [world["alice"].id])
        assert not result.success
        assert result.error_kind == ErrorKind.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_company_users_cannot_apply(self, lifecycle, world):
        result = await lifecycle.create_application(world["reviewer"].id, world["project"].id, [world["alice"].id])
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED

    @pytest.mark.asyncio
    async def test_rejects_duplicate_and_self_invites(self, lifecycle, world, reader):
        duplicate = await lifecycle.create_application(
            world["lead"].id, world["project"].id, [world["alice"].id, world["alice"].id]
        )
        self_invite = await lifecycle.create_application(
            world["lead"].id, world["project"].id, [world["lead"].id]
        )

        assert duplicate.error_kind == ErrorKind.VALIDATION
        assert self_invite.error_kind == ErrorKind.VALIDATION
        assert await reader.count(Application) == 0

    @pytest.mark.asyncio
    async def test_rejects_second_application_to_same_project(self, lifecycle, world):
        await create_team(lifecycle, world, "alice")
        result = await lifecycle.create_application(world["lead"].id, world["project"].id, [world["bob"].id])

        assert result.error_kind == ErrorKind.STATE_CONFLICT
        assert result.error == "You have already applied to this project"

    @pytest.mark.asyncio
    async def test_project_must_be_accepting(self, lifecycle, world, seed):
        draft = await seed.project(world["company"], world["reviewer"], title="Draft", status=ProjectStatus.SCHEDULED)
        result = await lifecycle.create_application(world["lead"].id, draft.id, [world["alice"].id])
        assert result.error_kind == ErrorKind.STATE_CONFLICT

    @pytest.mark.asyncio
    async def test_unknown_project(self, lifecycle, world):
        result = await lifecycle.create_application(world["lead"].id, "no-such-project", [world["alice"].id])
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.error == "Project not found"

    @pytest.mark.asyncio
    async def test_enforces_team_size(self, lifecycle, world, seed):
        small = await seed.project(world["company"], world["reviewer"], title="Pairs Only", min_students=2, max_students=2)

        too_small = await lifecycle.create_application(world["lead"].id, small.id, [])
        too_large = await lifecycle.create_application(
            world["lead"].id, small.id, [world["alice"].id, world["bob"].id]
        )

        assert too_small.error_kind == ErrorKind.VALIDATION
        assert "at least 2" in too_small.error
        assert too_large.error_kind == ErrorKind.VALIDATION
        assert "cannot exceed 2" in too_large.error

    @pytest.mark.asyncio
    async def test_invitees_must_be_students(self, lifecycle, world):
        result = await lifecycle.create_application(
            world["lead"].id, world["project"].id, [world["alice"].id, world["reviewer"].id]
        )
        assert result.error_kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_active_application_limit(self, lifecycle, world, seed, monkeypatch):
        monkeypatch.setattr(settings, "MAX_ACTIVE_APPLICATIONS", 1)
        other = await seed.project(world["company"], world["reviewer"], title="Inventory Forecasting")
        await create_team(lifecycle, world, "alice")

        limits = (await lifecycle.student_limits(world["lead"].id)).limits
        result = await lifecycle.create_application(world["lead"].id, other.id, [world["bob"].id])

        assert not limits.can_apply
        assert limits.active_applications == 1
        assert limits.errors == ["You have reached the maximum of 1 active applications"]
        assert result.error_kind == ErrorKind.VALIDATION


class TestStudentLimits:
    """Test the active project and application counters"""

    @pytest.mark.asyncio
    async def test_fresh_student_can_apply(self, lifecycle, world):
        limits = (await lifecycle.student_limits(world["alice"].id)).limits
        assert limits.can_apply
        assert limits.active_projects == 0
        assert limits.active_applications == 0
        assert limits.errors == []

    @pytest.mark.asyncio
    async def test_counts_only_led_applications(self, lifecycle, world):
        await create_team(lifecycle, world, "alice")

        assert (await lifecycle.student_limits(world["lead"].id)).limits.active_applications == 1
        assert (await lifecycle.student_limits(world["alice"].id)).limits.active_applications == 0

    @pytest.mark.asyncio
    async def test_anonymous_caller(self, lifecycle):
        result = await lifecycle.student_limits(None)
        assert not result.success
        assert result.error_kind == ErrorKind.NOT_AUTHENTICATED
        assert result.limits is None

    @pytest.mark.asyncio
    async def test_store_unavailable_is_transient(self, notifier, world):
        lifecycle = ApplicationLifecycle(UnreachableStore(), notifier)

        result = await lifecycle.student_limits(world["lead"].id)

        assert not result.success
        assert result.error_kind == ErrorKind.TRANSIENT


class TestConfirmMembership:
    """Test confirmations and the automatic submission on consensus"""

    @pytest.mark.asyncio
    async def test_partial_confirmation_keeps_application_pending(self, lifecycle, world, reader, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice", "bob")

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.success
        assert not result.auto_submitted
        assert (await reader.application(application_id)).status == ApplicationStatus.PENDING
        members = await reader.members(application_id)
        assert members[world["alice"].id].invite_status == InviteStatus.ACCEPTED
        assert members[world["alice"].id].confirmed_at is not None
        assert members[world["bob"].id].invite_status == InviteStatus.PENDING

        await notifier.drain()
        lead_mail = transport.to(world["lead"].email)
        assert len(lead_mail) == 1
        assert lead_mail[0][1] == "Team member confirmed for Warehouse Route Optimizer"
        assert "Alice Moreau" in lead_mail[0][2]

    @pytest.mark.asyncio
    async def test_last_confirmation_submits(self, lifecycle, world, reader, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice", "bob")
        await lifecycle.confirm_membership(world["alice"].id, application_id)
        await notifier.drain()
        transport.sent.clear()

        result = await lifecycle.confirm_membership(world["bob"].id, application_id)

        assert result.success
        assert result.auto_submitted
        assert result.auto_decision is None
        application = await reader.application(application_id)
        assert application.status == ApplicationStatus.SUBMITTED
        assert application.submitted_at is not None

        await notifier.drain()
        for name in ("lead", "alice", "bob"):
            subjects = [m[1] for m in transport.to(world[name].email)]
            assert "Application submitted: Warehouse Route Optimizer" in subjects
        company_mail = transport.to(world["reviewer"].email)
        assert len(company_mail) == 1
        assert company_mail[0][1] == "New application for Warehouse Route Optimizer"
        assert "3 students" in company_mail[0][2]

    @pytest.mark.asyncio
    async def test_confirming_twice_is_a_conflict(self, lifecycle, world):
        application_id = await create_team(lifecycle, world, "alice", "bob")
        await lifecycle.confirm_membership(world["alice"].id, application_id)

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.error_kind == ErrorKind.STATE_CONFLICT
        assert result.error == "You have already confirmed your participation"

    @pytest.mark.asyncio
    async def test_non_member_cannot_confirm(self, lifecycle, world, reader):
        application_id = await create_team(lifecycle, world, "alice")

        result = await lifecycle.confirm_membership(world["carol"].id, application_id)

        assert result.error_kind == ErrorKind.NOT_AUTHORIZED
        assert result.error == "You are not a member of this application"
        assert (await reader.application(application_id)).status == ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_application(self, lifecycle, world):
        result = await lifecycle.confirm_membership(world["alice"].id, "missing")
        assert result.error_kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_confirming_after_manual_submit_does_not_resubmit(self, lifecycle, world, reader):
        application_id = await create_team(lifecycle, world, "alice")
        assert (await lifecycle.submit(world["lead"].id, application_id)).success

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.success
        assert not result.auto_submitted
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_project_closed_before_consensus(self, lifecycle, world, reader, session_factory):
        application_id = await create_team(lifecycle, world, "alice")
        async with session_factory() as db:
            project = await db.get(Project, world["project"].id)
            project.status = ProjectStatus.IN_PROGRESS
            await db.commit()

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.success
        assert not result.auto_submitted
        assert (await reader.application(application_id)).status == ApplicationStatus.PENDING
        members = await reader.members(application_id)
        assert members[world["alice"].id].invite_status == InviteStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_fail_confirmation(self, session_factory, world, reader):
        notifier = NotificationDispatcher(FailingTransport())
        lifecycle = ApplicationLifecycle(session_factory, notifier)
        application_id = await create_team(lifecycle, world, "alice")

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)
        await notifier.drain()

        assert result.success
        assert result.auto_submitted
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_broken_dispatcher_does_not_fail_confirmation(self, session_factory, world, reader):
        lifecycle = ApplicationLifecycle(session_factory, ExplodingDispatcher())
        application_id = await create_team(lifecycle, world, "alice", "bob")

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.success
        members = await reader.members(application_id)
        assert members[world["alice"].id].invite_status == InviteStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_confirmations_submit_once(self, lifecycle, world, reader, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice", "bob", "carol")
        await notifier.drain()
        transport.sent.clear()

        results = await asyncio.gather(*[
            lifecycle.confirm_membership(world[name].id, application_id)
            for name in ("alice", "bob", "carol")
        ])

        assert all(r.success for r in results)
        assert [r.auto_submitted for r in results].count(True) == 1
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED

        await notifier.drain()
        for name in ("lead", "alice", "bob", "carol"):
            subjects = [m[1] for m in transport.to(world[name].email)]
            assert subjects.count("Application submitted: Warehouse Route Optimizer") == 1
        assert len(transport.to(world["reviewer"].email)) == 1

    @pytest.mark.asyncio
    async def test_manual_submit_racing_last_confirmation(self, lifecycle, world, reader, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice")
        await notifier.drain()
        transport.sent.clear()

        submitted, confirmed = await asyncio.gather(
            lifecycle.submit(world["lead"].id, application_id),
            lifecycle.confirm_membership(world["alice"].id, application_id),
        )

        assert confirmed.success
        assert [submitted.success, confirmed.auto_submitted].count(True) == 1
        if not submitted.success:
            assert submitted.error_kind == ErrorKind.STATE_CONFLICT
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED

        await notifier.drain()
        for name in ("lead", "alice"):
            subjects = [m[1] for m in transport.to(world[name].email)]
            assert subjects.count("Application submitted: Warehouse Route Optimizer") == 1
        assert len(transport.to(world["reviewer"].email)) == 1


class TestSubmissionFollowUp:
    """A committed submission stays successful when its follow-up fails"""

    @staticmethod
    def break_follow_up(lifecycle, monkeypatch):
        async def unavailable(application_id):
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

        monkeypatch.setattr(lifecycle, "_after_submission", unavailable)

    @pytest.mark.asyncio
    async def test_manual_submit(self, lifecycle, world, reader, monkeypatch):
        application_id = await create_team(lifecycle, world, "alice")
        self.break_follow_up(lifecycle, monkeypatch)

        result = await lifecycle.submit(world["lead"].id, application_id)

        assert result.success
        assert result.auto_decision is None
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_solo_application(self, lifecycle, world, reader, monkeypatch):
        self.break_follow_up(lifecycle, monkeypatch)

        result = await lifecycle.create_application(world["lead"].id, world["project"].id, [])

        assert result.success
        assert result.auto_submitted
        assert (await reader.application(result.application_id)).status == ApplicationStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_last_confirmation(self, lifecycle, world, reader, monkeypatch):
        application_id = await create_team(lifecycle, world, "alice")
        self.break_follow_up(lifecycle, monkeypatch)

        result = await lifecycle.confirm_membership(world["alice"].id, application_id)

        assert result.success
        assert result.auto_submitted
        assert (await reader.application(application_id)).status == ApplicationStatus.SUBMITTED


class TestDeclineMembership:
    """Test that a single decline disbands the application"""

    @pytest.mark.asyncio
    async def test_decline_deletes_application_and_members(self, lifecycle, world, reader):
        application_id = await create_team(lifecycle, world, "alice", "bob")

        result = await lifecycle.decline_membership(world["bob"].id, application_id)

        assert result.success
        assert result.redirect_to == "/student/dashboard"
        assert await reader.application(application_id) is None
        assert await reader.count(TeamMember) == 0

    @pytest.mark.asyncio
    async def test_every_member_notified_once_and_decliner_flagged(self, lifecycle, world, notifier, transport):
        application_id = await create_team(lifecycle, world, "alice", "bob")
        await notifier.drain()
        transport.sent.clear()

        await lifecycle.decline_membership(world["bob"].id, application_id)
        await notifier.drain()

        for name in ("lead", "alice", "bob"):
            sent = transport.to(world[name].email)
            assert len(sent) == 1
            assert sent[0][1] == "Application disbanded: Warehouse Route Optimizer"

        assert "You have declined participation" in transport.to(world["bob"].email)[0][2]
        for name in ("lead", "alice"):
            html = transport.to(world[name].email)[0][2]
            assert "You have declined participation" not in html
            assert "Bob Tanaka" in html

    @pytest.mark.asyncio
    async def test_decline_after_submission(self, lifecycle, world, reader):
        application_id = await create_team(lifecycle, world, "alice")
        await lifecycle.submit(world["lead"].id, application_id)

        result = await lifecycle.decline_membership(world["alice"].id, application_id)

        assert result.success
        assert await reader.application(application_id) is None

    @pytest.mark.asyncio
    async def test_non_member_cannot_decline(self, lifecycle, world, reader):
        application_id = await create_team(lifecycle, world, "alice")

        result = await lifecycle.decline_membership(world["carol"].id, application_id)

        assert result.error_kind == ErrorKind.NOT_AUTHORIZED
        assert await reader.application(application_id) is not None

    @pytest.mark.asyncio
    async def test_declining_a_gone_application(self, lifecycle, world):
        application_id = await create_team(lifecycle, world, "alice", "bob")
        await lifecycle.decline_membership(world["alice"].id, application_id)

        result = await lifecycle.decline_membership(world["bob"].id, application_id)

        assert result.error_kind == ErrorKind.NOT_FOUND
