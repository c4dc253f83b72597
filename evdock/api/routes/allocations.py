from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from evdock.api.deps import APP_LOCKS, unwrap
from evdock.core.database import get_db
from evdock.models.schemas import (
    Allocation,
    AllocationIntent,
    AllocationRequest,
    AllocationStatusUpdate,
    IntentState,
    Order,
    ReconcileReport,
)
from evdock.services.allocation_saga import AllocationOrchestrator
from evdock.services.order_service import AllocationService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _orchestrator(db: Session) -> AllocationOrchestrator:
    return AllocationOrchestrator(StorageService(db), locks=APP_LOCKS)


@router.get("/", response_model=List[Allocation])
async def get_allocations(db: Session = Depends(get_db)):
    """Get all allocations, newest first"""
    return unwrap(await AllocationService(StorageService(db)).get_allocations())


@router.get("/pending-orders", response_model=List[Order])
async def get_pending_orders(db: Session = Depends(get_db)):
    """Orders waiting for an allocation"""
    return unwrap(await AllocationService(StorageService(db)).get_pending_orders())


@router.get("/intents", response_model=List[AllocationIntent])
async def get_allocation_intents(state: Optional[IntentState] = None, db: Session = Depends(get_db)):
    """Allocation intent log, optionally filtered by state"""
    return unwrap(await _orchestrator(db).get_intents(state))


@router.post("/", response_model=Allocation)
async def allocate_order(request: AllocationRequest, db: Session = Depends(get_db)):
    """Reduce inventory and allocate it to an order"""
    return unwrap(await _orchestrator(db).allocate_order(request))


@router.post("/reconcile", response_model=ReconcileReport)
async def reconcile_allocations(db: Session = Depends(get_db)):
    """Settle interrupted or uncompensated allocations"""
    return unwrap(await _orchestrator(db).reconcile())


@router.get("/{allocation_id}", response_model=Allocation)
async def get_allocation(allocation_id: str, db: Session = Depends(get_db)):
    """Get a specific allocation"""
    return unwrap(await AllocationService(StorageService(db)).get_allocation(allocation_id))


@router.patch("/{allocation_id}/status", response_model=Allocation)
async def update_allocation_status(
    allocation_id: str, status_update: AllocationStatusUpdate, db: Session = Depends(get_db)
):
    """Move an allocation to allocated, shipped or delivered"""
    return unwrap(await _orchestrator(db).update_allocation_status(allocation_id, status_update.status))
