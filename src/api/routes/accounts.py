from uuid import UUID

from fastapi import APIRouter, Depends, status

from src.api.deps import ensure_self_or_admin, get_caller_identity, get_context, require_admin
from src.api.schemas import (
    AccountResponse,
    IdentityRolesResponse,
    ReassignRoleRequest,
    ReassignRoleResponse,
    RoleRequest,
)
from src.app_shell.context import ServiceContext

router = APIRouter()


@router.get("/identity/{identity_id}/roles", response_model=IdentityRolesResponse)
def identity_roles(
    identity_id: int,
    caller_id: int = Depends(get_caller_identity),
    ctx: ServiceContext = Depends(get_context),
) -> IdentityRolesResponse:
    ensure_self_or_admin(caller_id, identity_id, ctx)
    binding = ctx.authz_service.get_binding(identity_id)
    return IdentityRolesResponse(
        identity_id=identity_id,
        linked=binding.account_id is not None,
        account_id=binding.account_id,
        roles=sorted(binding.roles),
    )


@router.get(
    "/{account_id}",
    response_model=AccountResponse,
    dependencies=[Depends(require_admin)],
)
def get_account(account_id: UUID, ctx: ServiceContext = Depends(get_context)) -> AccountResponse:
    return AccountResponse.from_entity(ctx.account_service.get(account_id))


@router.post(
    "/{account_id}/roles",
    response_model=AccountResponse,
    dependencies=[Depends(require_admin)],
)
def assign_role(
    account_id: UUID,
    req: RoleRequest,
    ctx: ServiceContext = Depends(get_context),
) -> AccountResponse:
    return AccountResponse.from_entity(ctx.account_service.assign_role(account_id, req.role))


@router.delete(
    "/{account_id}/roles/{role}",
    response_model=AccountResponse,
    dependencies=[Depends(require_admin)],
)
def remove_role(
    account_id: UUID,
    role: str,
    ctx: ServiceContext = Depends(get_context),
) -> AccountResponse:
    return AccountResponse.from_entity(ctx.account_service.remove_role(account_id, role))


@router.delete(
    "/{account_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_account(account_id: UUID, ctx: ServiceContext = Depends(get_context)) -> None:
    ctx.account_service.delete_account(account_id)


@router.post(
    "/roles/reassign",
    response_model=ReassignRoleResponse,
    dependencies=[Depends(require_admin)],
)
def reassign_role(
    req: ReassignRoleRequest,
    ctx: ServiceContext = Depends(get_context),
) -> ReassignRoleResponse:
    """Bulk move every holder of one role to another."""
    return ReassignRoleResponse(
        changed=ctx.account_service.reassign_role(req.from_role, req.to_role)
    )
