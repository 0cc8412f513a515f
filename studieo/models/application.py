"""Application model – a team's bid to join a project."""

import enum
import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from studieo.database import Base


class ApplicationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED})


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("project_id", "team_lead_id", name="uq_application_project_lead"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    team_lead_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus), default=ApplicationStatus.PENDING, nullable=False
    )
    design_doc_url: Mapped[Optional[str]] = mapped_column(String(500))

    # ── JSON list (stored as Text for SQLite compat) ──
    answers_json: Mapped[Optional[str]] = mapped_column(Text, default="[]")

    # ── Timestamps ──
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # ── JSON helper ──
    @property
    def answers(self) -> List[Dict[str, str]]:
        try:
            return json.loads(self.answers_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    @property
    def is_decided(self) -> bool:
        return self.status in TERMINAL_STATUSES
