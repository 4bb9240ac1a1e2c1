from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import ensure_self_or_admin, get_caller_identity, get_context
from src.api.schemas import InviteResponse, IssueInviteRequest
from src.app_shell.context import ServiceContext

router = APIRouter()


@router.post("", response_model=InviteResponse)
def issue_invite(
    req: IssueInviteRequest,
    caller_id: int = Depends(get_caller_identity),
    ctx: ServiceContext = Depends(get_context),
) -> InviteResponse:
    """Issue a code for the caller's identity, or return its pending one."""
    identity_id = caller_id if req.identity_id is None else req.identity_id
    ensure_self_or_admin(caller_id, identity_id, ctx)
    invite = ctx.invite_service.issue(
        identity_id, req.display_name, lifetime_hours=req.lifetime_hours
    )
    return InviteResponse.from_entity(invite, ctx.clock.now_utc())


@router.get("/identity/{identity_id}/active", response_model=InviteResponse)
def get_active_invite(
    identity_id: int,
    caller_id: int = Depends(get_caller_identity),
    ctx: ServiceContext = Depends(get_context),
) -> InviteResponse:
    ensure_self_or_admin(caller_id, identity_id, ctx)
    invite = ctx.invite_service.active_code(identity_id)
    if invite is None:
        raise HTTPException(status_code=404, detail="No active invite code")
    return InviteResponse.from_entity(invite, ctx.clock.now_utc())


@router.get("/identity/{identity_id}/history", response_model=list[InviteResponse])
def get_invite_history(
    identity_id: int,
    caller_id: int = Depends(get_caller_identity),
    ctx: ServiceContext = Depends(get_context),
) -> list[InviteResponse]:
    ensure_self_or_admin(caller_id, identity_id, ctx)
    now = ctx.clock.now_utc()
    return [InviteResponse.from_entity(i, now) for i in ctx.invite_service.history(identity_id)]


@router.get("/{code}", response_model=InviteResponse)
def validate_invite(
    code: str,
    ctx: ServiceContext = Depends(get_context),
) -> InviteResponse:
    """Check a code without consuming it (registration page pre-check)."""
    invite = ctx.invite_service.validate(code)
    return InviteResponse.from_entity(invite, ctx.clock.now_utc())
