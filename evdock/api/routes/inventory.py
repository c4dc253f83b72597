from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import (
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    InventoryStats,
    QuantityChange,
)
from evdock.services.inventory_service import InventoryService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _service(db: Session) -> InventoryService:
    return InventoryService(StorageService(db))


@router.post("/", response_model=InventoryItem)
async def create_inventory_item(item_data: InventoryItemCreate, db: Session = Depends(get_db)):
    """Create a new inventory item"""
    return unwrap(await _service(db).create_inventory_item(item_data))


@router.get("/", response_model=List[InventoryItem])
async def get_inventory_items(available: bool = False, db: Session = Depends(get_db)):
    """Get all inventory items, or only those with stock left"""
    service = _service(db)
    if available:
        return unwrap(await service.get_available_inventory())
    return unwrap(await service.get_inventory())


@router.get("/stats", response_model=InventoryStats)
async def get_inventory_stats(db: Session = Depends(get_db)):
    """Counts per stock status and total stock value"""
    return unwrap(await _service(db).get_inventory_stats())


@router.post("/reduce", response_model=InventoryItem)
async def reduce_inventory(change: QuantityChange, db: Session = Depends(get_db)):
    """Take vehicles out of a warehouse row"""
    return unwrap(
        await _service(db).reduce_inventory_quantity(
            change.vehicle_model, change.color, change.warehouse_location, change.amount
        )
    )


@router.post("/restore", response_model=InventoryItem)
async def restore_inventory(change: QuantityChange, db: Session = Depends(get_db)):
    """Put vehicles back into a warehouse row"""
    return unwrap(
        await _service(db).restore_inventory_quantity(
            change.vehicle_model, change.color, change.warehouse_location, change.amount
        )
    )


@router.get("/{item_id}", response_model=InventoryItem)
async def get_inventory_item(item_id: str, db: Session = Depends(get_db)):
    """Get a specific inventory item"""
    return unwrap(await _service(db).get_inventory_item(item_id))


@router.put("/{item_id}", response_model=InventoryItem)
async def update_inventory_item(item_id: str, item_data: InventoryItemUpdate, db: Session = Depends(get_db)):
    """Update an inventory item"""
    return unwrap(await _service(db).update_inventory_item(item_id, item_data))


@router.delete("/{item_id}", response_model=InventoryItem)
async def delete_inventory_item(item_id: str, db: Session = Depends(get_db)):
    """Delete an inventory item"""
    return unwrap(await _service(db).delete_inventory_item(item_id))
