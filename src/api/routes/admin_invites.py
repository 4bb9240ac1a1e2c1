from fastapi import APIRouter, Depends

from src.api.deps import get_context, require_admin
from src.api.schemas import (
    InvitePageResponse,
    InviteResponse,
    InviteStatisticsResponse,
    SweepRequest,
    SweepResponse,
)
from src.app_shell.context import ServiceContext

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("", response_model=InvitePageResponse)
def list_invites(
    page: int = 1,
    page_size: int | None = None,
    status: str | None = None,
    search: str | None = None,
    ctx: ServiceContext = Depends(get_context),
) -> InvitePageResponse:
    """Paged listing, newest first."""
    result = ctx.invite_service.page(page, page_size, status_filter=status, search_term=search)
    now = ctx.clock.now_utc()
    return InvitePageResponse(
        items=[InviteResponse.from_entity(i, now) for i in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/active", response_model=list[InviteResponse])
def list_active_invites(ctx: ServiceContext = Depends(get_context)) -> list[InviteResponse]:
    now = ctx.clock.now_utc()
    return [InviteResponse.from_entity(i, now) for i in ctx.invite_service.list_active()]


@router.get("/stats", response_model=InviteStatisticsResponse)
def invite_statistics(ctx: ServiceContext = Depends(get_context)) -> InviteStatisticsResponse:
    stats = ctx.invite_service.statistics()
    return InviteStatisticsResponse(
        pending_count=stats.pending_count,
        used_count=stats.used_count,
        expired_count=stats.expired_count,
        revoked_count=stats.revoked_count,
        total=stats.total,
    )


@router.post("/{code}/revoke", response_model=InviteResponse)
def revoke_invite(code: str, ctx: ServiceContext = Depends(get_context)) -> InviteResponse:
    invite = ctx.invite_service.revoke(code)
    return InviteResponse.from_entity(invite, ctx.clock.now_utc())


@router.post("/sweep", response_model=SweepResponse)
def sweep_invites(
    req: SweepRequest,
    ctx: ServiceContext = Depends(get_context),
) -> SweepResponse:
    """On-demand cleanup of long-expired codes."""
    return SweepResponse(deleted=ctx.invite_service.cleanup(req.days_old))
