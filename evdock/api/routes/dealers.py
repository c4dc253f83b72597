from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import Dealer, DealerCreate, DealerStatusUpdate, DealerUpdate
from evdock.services.dealer_service import DealerService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _service(db: Session) -> DealerService:
    return DealerService(StorageService(db))


@router.get("/", response_model=List[Dealer])
async def get_dealers(db: Session = Depends(get_db)):
    return unwrap(await _service(db).get_dealers())


@router.post("/", response_model=Dealer)
async def create_dealer(dealer_data: DealerCreate, db: Session = Depends(get_db)):
    """Register a new dealer"""
    return unwrap(await _service(db).create_dealer(dealer_data))


@router.get("/{dealer_id}", response_model=Dealer)
async def get_dealer(dealer_id: str, db: Session = Depends(get_db)):
    return unwrap(await _service(db).get_dealer(dealer_id))


@router.patch("/{dealer_id}", response_model=Dealer)
async def update_dealer(dealer_id: str, update_data: DealerUpdate, db: Session = Depends(get_db)):
    return unwrap(await _service(db).update_dealer(dealer_id, update_data))


@router.patch("/{dealer_id}/status", response_model=Dealer)
async def update_dealer_status(dealer_id: str, status_update: DealerStatusUpdate, db: Session = Depends(get_db)):
    """Activate, deactivate or suspend a dealer"""
    return unwrap(await _service(db).update_dealer_status(dealer_id, status_update.status))


@router.delete("/{dealer_id}")
async def delete_dealer(dealer_id: str, db: Session = Depends(get_db)):
    return unwrap(await _service(db).delete_dealer(dealer_id))
