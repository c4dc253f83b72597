from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import Warehouse
from evdock.services.order_service import WarehouseService
from evdock.services.storage_service import StorageService

router = APIRouter()


@router.get("/", response_model=List[Warehouse])
async def get_warehouses(db: Session = Depends(get_db)):
    """Get all warehouses"""
    return unwrap(await WarehouseService(StorageService(db)).get_warehouses())
