"""Project model – a short-term project posted by a company."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from studieo.database import Base


class ProjectStatus(str, enum.Enum):
    INCOMPLETE = "INCOMPLETE"
    SCHEDULED = "SCHEDULED"
    ACCEPTING = "ACCEPTING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class ProjectAccessType(str, enum.Enum):
    OPEN = "OPEN"       # decided automatically on submission
    CLOSED = "CLOSED"   # reviewed by the company


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id"), nullable=False)
    created_by_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)

    # ── Status ──
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus), default=ProjectStatus.INCOMPLETE
    )
    access_type: Mapped[ProjectAccessType] = mapped_column(
        Enum(ProjectAccessType), default=ProjectAccessType.CLOSED
    )

    # ── Team sizing ──
    min_students: Mapped[int] = mapped_column(Integer, default=1)
    max_students: Mapped[int] = mapped_column(Integer, default=5)
    max_teams: Mapped[Optional[int]] = mapped_column(Integer)

    # ── Kickoff contact ──
    contact_name: Mapped[Optional[str]] = mapped_column(String(200))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    contact_role: Mapped[Optional[str]] = mapped_column(String(150))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
