"""First-run demo data, written only into keys that do not exist yet."""
import logging
from typing import List, Type
from pydantic import BaseModel
from evdock.models.schemas import InventoryItem, Order, Warehouse
from evdock.services import storage_keys
from evdock.services.storage_service import StorageService

logger = logging.getLogger(__name__)

SEED_ORDERS = [
    {
        "id": "ORD001",
        "dealerId": "DEALER001",
        "dealerName": "AutoWorld Hanoi",
        "vehicleModel": "Model X",
        "quantity": 5,
        "color": "Black",
        "status": "pending",
        "orderDate": "2024-01-15",
        "expectedDelivery": "2024-02-15",
        "totalValue": 600000000,
        "priority": "high",
        "createdAt": "2024-01-15T10:00:00.000Z",
    },
    {
        "id": "ORD002",
        "dealerId": "DEALER001",
        "dealerName": "AutoWorld Hanoi",
        "vehicleModel": "Model Y",
        "quantity": 3,
        "color": "White",
        "status": "pending_allocation",
        "orderDate": "2024-01-10",
        "expectedDelivery": "2024-02-10",
        "totalValue": 285000000,
        "priority": "normal",
        "createdAt": "2024-01-10T10:00:00.000Z",
    },
    {
        "id": "ORD003",
        "dealerId": "DEALER002",
        "dealerName": "City Motors HCMC",
        "vehicleModel": "Model V",
        "quantity": 2,
        "color": "Silver",
        "status": "pending_allocation",
        "orderDate": "2024-01-05",
        "expectedDelivery": "2024-01-25",
        "totalValue": 170000000,
        "priority": "low",
        "createdAt": "2024-01-05T10:00:00.000Z",
    },
]

SEED_WAREHOUSES = [
    {"id": "WH001", "name": "Warehouse A - Hanoi", "location": "Hanoi", "capacity": 200},
    {"id": "WH002", "name": "Warehouse B - Danang", "location": "Danang", "capacity": 150},
    {"id": "WH003", "name": "Warehouse C - HCMC", "location": "HCMC", "capacity": 300},
]

SEED_INVENTORY = [
    {
        "id": "INV001",
        "vehicleModel": "Model X",
        "color": "Black",
        "warehouseLocation": "WH001",
        "quantity": 20,
        "price": 120000000,
        "lastUpdated": "2024-01-01",
    },
    {
        "id": "INV002",
        "vehicleModel": "Model Y",
        "color": "White",
        "warehouseLocation": "WH001",
        "quantity": 3,
        "price": 95000000,
        "lastUpdated": "2024-01-01",
    },
    {
        "id": "INV003",
        "vehicleModel": "Model V",
        "color": "Silver",
        "warehouseLocation": "WH003",
        "quantity": 8,
        "price": 85000000,
        "lastUpdated": "2024-01-01",
    },
]


async def _seed_key(store: StorageService, key: str, model: Type[BaseModel], records: List[dict]) -> bool:
    # An emptied list still counts as written
    _, version = await store.get_versioned(key)
    if version:
        return False
    # Validate before writing so a bad fixture never lands in storage
    payload = [model.model_validate(r).model_dump(mode="json", by_alias=True) for r in records]
    await store.set_item(key, payload)
    logger.info(f"Seeded {len(payload)} records into {key}")
    return True


async def ensure_seed_data(store: StorageService) -> List[str]:
    """Seed orders, warehouses and inventory; returns the keys that were written"""
    seeded = []
    for key, model, records in (
        (storage_keys.ORDERS, Order, SEED_ORDERS),
        (storage_keys.WAREHOUSES, Warehouse, SEED_WAREHOUSES),
        (storage_keys.INVENTORY, InventoryItem, SEED_INVENTORY),
    ):
        if await _seed_key(store, key, model, records):
            seeded.append(key)
    return seeded
