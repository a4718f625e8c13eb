"""Real-time subscriber status."""

from fastapi import APIRouter

from pos_core.api.deps import ConnectionManagerDep
from pos_core.core.rbac import CurrentUser
from pos_core.core.responses import success_response

router = APIRouter()


@router.get("/status")
async def socket_status(current_user: CurrentUser, manager: ConnectionManagerDep):
    """Connected clients and fan-out counters."""
    return success_response(
        {"stats": manager.get_stats(), "clients": manager.list_clients()},
        "Socket status retrieved",
    )
