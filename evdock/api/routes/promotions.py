from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import (
    Promotion,
    PromotionCreate,
    PromotionStats,
    PromotionStatus,
    PromotionUpdate,
)
from evdock.services.promotion_service import PromotionService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _service(db: Session) -> PromotionService:
    return PromotionService(StorageService(db))


@router.get("/", response_model=List[Promotion])
async def get_promotions(
    status: Optional[PromotionStatus] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """All promotions, filtered by status or searched by name, code and description"""
    service = _service(db)
    if status is not None:
        return unwrap(await service.get_promotions_by_status(status))
    if q:
        return unwrap(await service.search_promotions(q))
    return unwrap(await service.get_promotions())


@router.get("/stats", response_model=PromotionStats)
async def get_promotion_stats(db: Session = Depends(get_db)):
    return unwrap(await _service(db).get_promotion_stats())


@router.get("/staff", response_model=List[Promotion])
async def get_staff_promotions(db: Session = Depends(get_db)):
    """Active promotions staff may offer to customers"""
    return unwrap(await _service(db).get_promotions_for_staff())


@router.post("/", response_model=Promotion)
async def create_promotion(promotion_data: PromotionCreate, db: Session = Depends(get_db)):
    return unwrap(await _service(db).add_promotion(promotion_data))


@router.get("/{promotion_id}", response_model=Promotion)
async def get_promotion(promotion_id: str, db: Session = Depends(get_db)):
    return unwrap(await _service(db).get_promotion(promotion_id))


@router.patch("/{promotion_id}", response_model=Promotion)
async def update_promotion(promotion_id: str, update_data: PromotionUpdate, db: Session = Depends(get_db)):
    return unwrap(await _service(db).update_promotion(promotion_id, update_data))


@router.delete("/{promotion_id}")
async def delete_promotion(promotion_id: str, db: Session = Depends(get_db)):
    return unwrap(await _service(db).delete_promotion(promotion_id))
