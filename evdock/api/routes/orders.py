from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import Order, OrderCreate, OrderUpdate
from evdock.services.order_service import OrderService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _service(db: Session) -> OrderService:
    return OrderService(StorageService(db))


@router.post("/", response_model=Order)
async def create_order(order_data: OrderCreate, db: Session = Depends(get_db)):
    """Create a new dealer order"""
    return unwrap(await _service(db).create_order(order_data))


@router.get("/", response_model=List[Order])
async def get_orders(dealer_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Get all orders, optionally for one dealer"""
    return unwrap(await _service(db).get_orders_by_dealer(dealer_id))


@router.get("/{order_id}", response_model=Order)
async def get_order(order_id: str, db: Session = Depends(get_db)):
    """Get a specific order"""
    return unwrap(await _service(db).get_order(order_id))


@router.patch("/{order_id}", response_model=Order)
async def update_order(order_id: str, update_data: OrderUpdate, db: Session = Depends(get_db)):
    """Update order fields or status"""
    return unwrap(await _service(db).update_order(order_id, update_data))
