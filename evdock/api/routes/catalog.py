from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Dict, List
from evdock.api.deps import unwrap
from evdock.core.database import get_db
from evdock.models.schemas import (
    CatalogEntry,
    ColorStockDecrement,
    DeliveredVehicles,
    RetailPrice,
    RetailPriceUpdate,
    VersionOption,
)
from evdock.services.catalog_service import DealerCatalogService
from evdock.services.storage_service import StorageService

router = APIRouter()


def _service(db: Session) -> DealerCatalogService:
    return DealerCatalogService(StorageService(db))


@router.get("/", response_model=List[CatalogEntry])
async def get_catalog(version: str = "all", search: str = "", db: Session = Depends(get_db)):
    """Vehicles on hand at the dealer, filtered by version and name"""
    service = _service(db)
    if version == "all" and not search:
        return unwrap(await service.get_catalog())
    return unwrap(await service.filter_vehicles(version, search))


@router.get("/versions", response_model=List[VersionOption])
async def get_versions(db: Session = Depends(get_db)):
    return unwrap(await _service(db).get_versions())


@router.get("/prices", response_model=Dict[str, dict])
async def get_retail_prices(db: Session = Depends(get_db)):
    """Retail prices keyed by model id"""
    return unwrap(await _service(db).get_retail_prices())


@router.put("/prices/{model_id}", response_model=RetailPrice)
async def set_retail_price(model_id: str, price_data: RetailPriceUpdate, db: Session = Depends(get_db)):
    return unwrap(await _service(db).set_retail_price(model_id, price_data.price, price_data.currency))


@router.post("/deliveries", response_model=CatalogEntry)
async def add_delivered_vehicles(delivery: DeliveredVehicles, db: Session = Depends(get_db)):
    """Record vehicles received by the dealer"""
    return unwrap(
        await _service(db).add_delivered_vehicles(
            vehicle_model=delivery.vehicle_model,
            color=delivery.color,
            quantity=delivery.quantity,
            version=delivery.version,
            image=delivery.image,
        )
    )


@router.post("/sales", response_model=CatalogEntry)
async def decrement_color_stock(sale: ColorStockDecrement, db: Session = Depends(get_db)):
    """Take sold vehicles out of the dealer stock"""
    return unwrap(await _service(db).decrement_color_stock(sale.vehicle_model_or_id, sale.color, sale.quantity))
