from fastapi import APIRouter, Depends, status

from src.api.deps import get_context
from src.api.schemas import AccountResponse, RegisterRequest
from src.app_shell.context import ServiceContext

router = APIRouter()


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register(
    req: RegisterRequest,
    ctx: ServiceContext = Depends(get_context),
) -> AccountResponse:
    """Create an account from an invite code and link the code owner's identity."""
    account = ctx.registration_service.register(
        req.code, req.username, req.email, req.password
    )
    return AccountResponse.from_entity(account)
