"""Tables management routes - status is derived from open orders."""

from typing import Optional

from fastapi import APIRouter

from pos_core.api.deps import TableServiceDep
from pos_core.core.rbac import CurrentUser, RequireManager
from pos_core.core.responses import list_response, success_response
from pos_core.schemas.table import TableCreate, TableStatusUpdate, TableUpdate

router = APIRouter()


@router.get("")
async def list_tables(
    current_user: CurrentUser,
    service: TableServiceDep,
    status: Optional[str] = None,
    location: Optional[str] = None,
):
    """List all tables with their current status."""
    tables = await service.list_tables(status=status, location=location)
    return list_response(tables, "Tables retrieved successfully")


@router.get("/available")
async def list_available_tables(current_user: CurrentUser, service: TableServiceDep):
    tables = await service.list_available()
    return list_response(tables, "Available tables retrieved successfully")


@router.get("/{table_id}")
async def get_table(table_id: int, current_user: CurrentUser, service: TableServiceDep):
    table = await service.get_table(table_id)
    return success_response(table, "Table retrieved successfully")


@router.post("", status_code=201)
async def create_table(data: TableCreate, current_user: RequireManager, service: TableServiceDep):
    table = await service.create_table(data)
    return success_response(table, "Table created successfully")


@router.put("/{table_id}")
async def update_table(
    table_id: int, data: TableUpdate, current_user: RequireManager, service: TableServiceDep
):
    table = await service.update_table(table_id, data)
    return success_response(table, "Table updated successfully")


@router.patch("/{table_id}/status")
async def update_table_status(
    table_id: int, data: TableStatusUpdate, current_user: CurrentUser, service: TableServiceDep
):
    """Set reserved/maintenance/available. Occupancy comes from orders."""
    table = await service.set_status(table_id, data.status)
    return success_response(table, "Table status updated successfully")


@router.delete("/{table_id}")
async def delete_table(table_id: int, current_user: RequireManager, service: TableServiceDep):
    await service.delete_table(table_id)
    return success_response(message="Table deleted successfully")
