"""Shared fixtures: a throwaway SQLite store, a recording mail transport, and seed helpers."""

from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studieo import models  # noqa: F401
from studieo.database import Base, build_engine
from studieo.models.application import Application
from studieo.models.company import Company
from studieo.models.project import Project, ProjectAccessType, ProjectStatus
from studieo.models.team_member import TeamMember
from studieo.models.user import User, UserRole
from studieo.services.lifecycle import ApplicationLifecycle
from studieo.services.notifications import NotificationDispatcher


class RecordingTransport:
    """Async stand-in for SMTP that keeps every message it is handed."""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    async def __call__(self, recipient: str, subject: str, html: str) -> None:
        self.sent.append((recipient, subject, html))

    def to(self, recipient: str) -> List[Tuple[str, str, str]]:
        return [m for m in self.sent if m[0] == recipient]


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'studieo-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
async def notifier(transport):
    dispatcher = NotificationDispatcher(transport)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def lifecycle(session_factory, notifier):
    return ApplicationLifecycle(session_factory, notifier)


class Seeder:
    """Inserts the companies, users and projects a scenario needs."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _add(self, obj):
        async with self._session_factory() as db:
            db.add(obj)
            await db.commit()
        return obj

    async def company(self, name: str = "Acme Robotics") -> Company:
        return await self._add(Company(name=name, domain=f"{name.split()[0].lower()}.example"))

    async def company_user(self, company: Company, name: str = "Casey Reviewer") -> User:
        email = f"{name.split()[0].lower()}@{company.domain}"
        return await self._add(User(
            email=email,
            name=name,
            role=UserRole.COMPANY,
            company_id=company.id,
            company_role="Engineering Manager",
        ))

    async def student(self, name: str) -> User:
        email = f"{name.split()[0].lower()}@university.example"
        return await self._add(User(email=email, name=name, role=UserRole.STUDENT))

    async def students(self, *names: str) -> List[User]:
        return [await self.student(name) for name in names]

    async def project(
        self,
        company: Company,
        creator: User,
        title: str = "Warehouse Route Optimizer",
        status: ProjectStatus = ProjectStatus.ACCEPTING,
        access_type: ProjectAccessType = ProjectAccessType.CLOSED,
        min_students: int = 1,
        max_students: int = 5,
        max_teams: Optional[int] = None,
    ) -> Project:
        return await self._add(Project(
            title=title,
            company_id=company.id,
            created_by_id=creator.id,
            status=status,
            access_type=access_type,
            min_students=min_students,
            max_students=max_students,
            max_teams=max_teams,
            contact_name="Jordan Lee",
            contact_email="jordan@acme.example",
            contact_role="Project Sponsor",
        ))


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
async def world(seed):
    """A company with a reviewer, an ACCEPTING CLOSED project and four students."""
    company = await seed.company()
    reviewer = await seed.company_user(company)
    project = await seed.project(company, reviewer)
    lead, alice, bob, carol = await seed.students(
        "Lena Lead", "Alice Moreau", "Bob Tanaka", "Carol Singh"
    )
    return {
        "company": company,
        "reviewer": reviewer,
        "project": project,
        "lead": lead,
        "alice": alice,
        "bob": bob,
        "carol": carol,
    }


class StoreReader:
    """Reads application state back out of the store for assertions."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def application(self, application_id: str) -> Optional[Application]:
        async with self._session_factory() as db:
            return await db.get(Application, application_id)

    async def members(self, application_id: str) -> Dict[str, TeamMember]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TeamMember).where(TeamMember.application_id == application_id)
            )
            return {m.student_id: m for m in result.scalars().all()}

    async def count(self, model) -> int:
        async with self._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(model))
            return result.scalar() or 0


@pytest.fixture
def reader(session_factory):
    return StoreReader(session_factory)
