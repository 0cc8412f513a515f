"""Applications router – thin HTTP layer over the application lifecycle engine."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, RedirectResponse

from studieo.database import async_session
from studieo.routers.auth import LOGIN_URL, get_current_user_id
from studieo.schemas.application import ActionResult, ApplicationCreate, ErrorKind
from studieo.services.lifecycle import ApplicationLifecycle
from studieo.services.notifications import notifier

router = APIRouter(prefix="/applications", tags=["applications"])

_lifecycle = ApplicationLifecycle(async_session, notifier)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.STATE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_lifecycle() -> ApplicationLifecycle:
    return _lifecycle


def _respond(result: ActionResult):
    if result.error_kind == ErrorKind.NOT_AUTHENTICATED:
        return RedirectResponse(url=LOGIN_URL, status_code=status.HTTP_303_SEE_OTHER)
    if result.success and result.redirect_to:
        return RedirectResponse(url=result.redirect_to, status_code=status.HTTP_303_SEE_OTHER)

    code = status.HTTP_200_OK if result.success else STATUS_BY_KIND.get(result.error_kind, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(
        status_code=code,
        content=result.model_dump(mode="json", exclude_none=True),
    )


@router.post("/")
async def create_application(
    body: ApplicationCreate,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    """Team lead creates an application and invites the rest of the team."""
    result = await lifecycle.create_application(
        caller_id,
        body.project_id,
        body.team_member_ids,
        design_doc_url=body.design_doc_url,
        answers=[a.model_dump() for a in body.answers],
    )
    if result.success:
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=result.model_dump(mode="json", exclude_none=True),
        )
    return _respond(result)


@router.get("/limits")
async def student_limits(
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.student_limits(caller_id))


@router.get("/{application_id}")
async def get_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.get_application(caller_id, application_id))


@router.post("/{application_id}/confirm")
async def confirm_membership(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    """Invited member confirms; the last confirmation submits the application."""
    return _respond(await lifecycle.confirm_membership(caller_id, application_id))


@router.post("/{application_id}/decline")
async def decline_membership(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    """Invited member declines, disbanding the whole application."""
    return _respond(await lifecycle.decline_membership(caller_id, application_id))


@router.post("/{application_id}/submit")
async def submit_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.submit(caller_id, application_id))


@router.post("/{application_id}/withdraw")
async def withdraw_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.withdraw(caller_id, application_id))


@router.post("/{application_id}/accept")
async def accept_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.accept(caller_id, application_id))


@router.post("/{application_id}/reject")
async def reject_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    return _respond(await lifecycle.reject(caller_id, application_id))


@router.delete("/{application_id}")
async def delete_application(
    application_id: str,
    caller_id: Optional[str] = Depends(get_current_user_id),
    lifecycle: ApplicationLifecycle = Depends(get_lifecycle),
):
    """Owning company removes an application without notifying the team."""
    return _respond(await lifecycle.delete_application(caller_id, application_id))
