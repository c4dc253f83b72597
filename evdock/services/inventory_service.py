import logging
from typing import List
from evdock.core.exceptions import DuplicateError, InsufficientStockError, NotFoundError, ValidationError
from evdock.models.schemas import (
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    InventoryStats,
    InventoryStatus,
    derive_status,
    today,
)
from evdock.services import storage_keys
from evdock.services.base import BaseService, service_call
from evdock.services.repository import CollectionRepository, generate_id

logger = logging.getLogger(__name__)

__all__ = ["InventoryService", "derive_status"]

ITEM_NOT_FOUND = "Không tìm thấy xe trong kho"
INVALID_QUANTITY = "Số lượng không hợp lệ. Vui lòng nhập số dương."


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(INVALID_QUANTITY)


class InventoryService(BaseService):
    """
    Inventory ledger keyed by (vehicle model, color, warehouse).

    reduce/restore are the primitives used by the allocation flow. Each
    mutation reloads the list, changes one record and writes the whole list
    back; a concurrent write to the same key makes the flush fail and the
    operation is retried on fresh data.
    """

    def _repository(self) -> CollectionRepository[InventoryItem]:
        return CollectionRepository(self.store, storage_keys.INVENTORY, InventoryItem)

    async def _load(self) -> CollectionRepository[InventoryItem]:
        return await self._repository().load()

    @staticmethod
    def _find_item(
        repo: CollectionRepository[InventoryItem], vehicle_model: str, color: str, warehouse_location: str
    ) -> InventoryItem:
        item = repo.find(lambda i: i.matches(vehicle_model, color, warehouse_location))
        if not item:
            raise NotFoundError(f"{ITEM_NOT_FOUND}: {vehicle_model} ({color}) tại {warehouse_location}")
        return item

    @service_call("Không thể tải danh sách tồn kho")
    async def get_inventory(self) -> List[InventoryItem]:
        repo = await self._load()
        return repo.all()

    @service_call("Không thể tải chi tiết tồn kho")
    async def get_inventory_item(self, item_id: str) -> InventoryItem:
        repo = await self._load()
        item = repo.get(item_id)
        if not item:
            raise NotFoundError(ITEM_NOT_FOUND)
        return item

    @service_call("Không thể tải tồn kho có sẵn")
    async def get_available_inventory(self) -> List[InventoryItem]:
        """Items that can still be allocated (quantity > 0)"""
        repo = await self._load()
        return repo.filter(lambda i: i.quantity > 0)

    @service_call("Không thể tạo mục tồn kho", retry=True)
    async def create_inventory_item(self, item_data: InventoryItemCreate) -> InventoryItem:
        repo = await self._load()
        existing = repo.find(
            lambda i: i.matches(item_data.vehicle_model, item_data.color, item_data.warehouse_location)
        )
        if existing:
            raise DuplicateError(
                f"Mục tồn kho đã tồn tại: {item_data.vehicle_model} ({item_data.color}) "
                f"tại {item_data.warehouse_location}"
            )

        item = InventoryItem(id=generate_id("INV"), **item_data.model_dump())
        repo.add(item)
        await repo.flush()
        logger.info(f"Created inventory item {item.id} with quantity {item.quantity}")
        return item

    @service_call("Không thể cập nhật mục tồn kho", retry=True)
    async def update_inventory_item(self, item_id: str, update_data: InventoryItemUpdate) -> InventoryItem:
        repo = await self._load()
        item = repo.get(item_id)
        if not item:
            raise NotFoundError(ITEM_NOT_FOUND)

        changes = {k: v for k, v in update_data.model_dump(exclude_unset=True).items() if v is not None}
        updated = item.model_copy(update={**changes, "last_updated": today()})

        clash = repo.find(
            lambda i: i.id != item_id
            and i.matches(updated.vehicle_model, updated.color, updated.warehouse_location)
        )
        if clash:
            raise DuplicateError(f"Mục tồn kho đã tồn tại: {clash.id}")

        repo.put(updated)
        await repo.flush()
        return updated

    @service_call("Không thể xóa mục tồn kho", retry=True)
    async def delete_inventory_item(self, item_id: str) -> InventoryItem:
        repo = await self._load()
        item = repo.remove(item_id)
        if not item:
            raise NotFoundError(ITEM_NOT_FOUND)
        await repo.flush()
        logger.info(f"Deleted inventory item {item_id}")
        return item

    @service_call("Không thể cập nhật tồn kho", retry=True)
    async def reduce_inventory_quantity(
        self, vehicle_model: str, color: str, warehouse_location: str, amount: int
    ) -> InventoryItem:
        _check_amount(amount)
        repo = await self._load()
        item = self._find_item(repo, vehicle_model, color, warehouse_location)

        if item.quantity < amount:
            raise InsufficientStockError(
                f"Không đủ xe trong kho. Còn lại: {item.quantity}, yêu cầu: {amount}"
            )

        item.quantity -= amount
        item.last_updated = today()
        await repo.flush()

        logger.info(
            f"Reduced inventory for {vehicle_model}/{color} at {warehouse_location}: "
            f"new quantity = {item.quantity}"
        )
        return item

    @service_call("Không thể cập nhật tồn kho", retry=True)
    async def restore_inventory_quantity(
        self, vehicle_model: str, color: str, warehouse_location: str, amount: int
    ) -> InventoryItem:
        # No upper bound: restore only ever gives back what reduce took
        _check_amount(amount)
        repo = await self._load()
        item = self._find_item(repo, vehicle_model, color, warehouse_location)

        item.quantity += amount
        item.last_updated = today()
        await repo.flush()

        logger.info(
            f"Restored inventory for {vehicle_model}/{color} at {warehouse_location}: "
            f"new quantity = {item.quantity}"
        )
        return item

    @service_call("Không thể tải thống kê tồn kho")
    async def get_inventory_stats(self) -> InventoryStats:
        items = (await self._load()).all()
        return InventoryStats(
            total_items=len(items),
            in_stock_items=sum(1 for i in items if i.status == InventoryStatus.IN_STOCK),
            low_stock_items=sum(1 for i in items if i.status == InventoryStatus.LOW_STOCK),
            out_of_stock_items=sum(1 for i in items if i.status == InventoryStatus.OUT_OF_STOCK),
            total_quantity=sum(i.quantity for i in items),
            total_value=sum(i.price * i.quantity for i in items),
        )
