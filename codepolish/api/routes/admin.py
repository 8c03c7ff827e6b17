"""Operator routes. Every route requires the admin role."""

from fastapi import APIRouter, BackgroundTasks, Depends

from codepolish.api.deps import rate_limit
from codepolish.core.auth import AuthUser, require_admin
from codepolish.core.context import AppContext, get_context
from codepolish.schemas.polish import RecoveryResponse

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/polish/recover", response_model=RecoveryResponse, dependencies=[Depends(rate_limit("mutation"))])
async def recover_polishes(
    background_tasks: BackgroundTasks,
    _: AuthUser = Depends(require_admin),
    context: AppContext = Depends(get_context),
):
    """Fail and refund stalled jobs now, and re-run jobs still pending."""
    pending = await context.pipeline.recover()
    if pending:
        background_tasks.add_task(context.pipeline.process_many, pending)
    return RecoveryResponse(redispatched=len(pending))
