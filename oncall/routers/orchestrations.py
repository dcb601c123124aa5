"""Orchestrations router."""

from fastapi import APIRouter, Depends, HTTPException, status

from oncall.durable.errors import InstanceNotFoundError
from oncall.durable.runtime import OrchestrationRuntime
from oncall.schemas.orchestration import OrchestrationStatusResponse
from oncall.services.escalation_activities import get_runtime

router = APIRouter(prefix="/api/orchestrations", tags=["orchestrations"])


@router.get("/{instance_id}", response_model=OrchestrationStatusResponse)
async def get_orchestration_status(
    instance_id: str,
    runtime: OrchestrationRuntime = Depends(get_runtime),
) -> OrchestrationStatusResponse:
    """Get the runtime status of an orchestration instance."""
    try:
        instance = await runtime.get_status(instance_id)
    except InstanceNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Orchestration instance not found",
        ) from None

    return OrchestrationStatusResponse.model_validate(instance)
