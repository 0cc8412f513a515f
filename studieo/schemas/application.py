"""Application Pydantic schemas – requests, views, and operation results."""

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, enum.Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_AUTHORIZED = "not_authorized"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    VALIDATION = "validation"
    TRANSIENT = "transient"


class AnswerIn(BaseModel):
    question_id: str
    answer: str


class ApplicationCreate(BaseModel):
    """Body for creating a team application."""
    project_id: str
    team_member_ids: List[str] = Field(default_factory=list)
    design_doc_url: Optional[str] = None
    answers: List[AnswerIn] = Field(default_factory=list)


class TeamMemberOut(BaseModel):
    student_id: str
    name: Optional[str] = None
    email: str
    is_lead: bool
    invite_status: str
    confirmed_at: Optional[datetime] = None


class ApplicationOut(BaseModel):
    id: str
    project_id: str
    project_title: str
    team_lead_id: str
    status: str
    design_doc_url: Optional[str] = None
    answers: List[AnswerIn] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    team_members: List[TeamMemberOut] = Field(default_factory=list)


class StudentLimits(BaseModel):
    can_apply: bool
    active_projects: int
    active_applications: int
    errors: List[str] = Field(default_factory=list)


class ActionResult(BaseModel):
    """Outcome of a lifecycle operation.

    Business failures come back here with ``success=False`` instead of being
    raised. ``redirect_to`` marks a success after which the caller should
    navigate elsewhere, e.g. because the application no longer exists.
    """
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    redirect_to: Optional[str] = None
    application_id: Optional[str] = None
    auto_submitted: bool = False
    auto_decision: Optional[str] = None
    application: Optional[ApplicationOut] = None
    limits: Optional[StudentLimits] = None

    @classmethod
    def ok(cls, **fields) -> "ActionResult":
        return cls(success=True, **fields)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str) -> "ActionResult":
        return cls(success=False, error=error, error_kind=kind)

    @classmethod
    def redirect(cls, path: str, **fields) -> "ActionResult":
        return cls(success=True, redirect_to=path, **fields)
