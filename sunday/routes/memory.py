"""Long-term memory and quota API routes."""

from fastapi import APIRouter

from ..dependencies import CurrentUserDep, RegistryDep, StoreDep
from ..memory import MemorySummary, QuotaStatus
from ..memory.schemas import MEMORY_SUMMARY

router = APIRouter()


@router.get("/memory", response_model=MemorySummary)
async def get_memory(
    store: StoreDep,
    current_user: CurrentUserDep,
) -> MemorySummary:
    """Get the current user's long-term memory summary and nodes."""
    user_id = current_user.user_id
    document = await store.get_summary_document(user_id, MEMORY_SUMMARY)
    return MemorySummary.from_document(user_id, document)


@router.get("/quota", response_model=QuotaStatus)
async def get_quota(
    registry: RegistryDep,
    current_user: CurrentUserDep,
) -> QuotaStatus:
    """Get new-session quota usage without consuming any."""
    return await registry.quota.status(current_user.user_id)
