import logging
from typing import List, Optional
from evdock.core.exceptions import NotFoundError
from evdock.models.schemas import (
    Allocation,
    AllocationCreate,
    AllocationStatus,
    Order,
    OrderCreate,
    OrderStatus,
    OrderUpdate,
    Warehouse,
    today,
    utcnow_iso,
)
from evdock.services import storage_keys
from evdock.services.base import BaseService, service_call
from evdock.services.repository import CollectionRepository, generate_id, run_with_retry

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "Không tìm thấy đơn hàng"
ALLOCATION_NOT_FOUND = "Không tìm thấy phân phối"

PENDING_STATUSES = (OrderStatus.PENDING, OrderStatus.PENDING_ALLOCATION)


def orders_repository(store) -> CollectionRepository[Order]:
    return CollectionRepository(store, storage_keys.ORDERS, Order)


def allocations_repository(store) -> CollectionRepository[Allocation]:
    return CollectionRepository(store, storage_keys.ALLOCATIONS, Allocation)


class OrderService(BaseService):
    """Dealer orders"""

    @service_call("Không thể tải danh sách đơn hàng")
    async def get_orders_by_dealer(self, dealer_id: Optional[str] = None) -> List[Order]:
        repo = await orders_repository(self.store).load()
        if not dealer_id:
            return repo.all()
        return repo.filter(lambda o: o.dealer_id == dealer_id)

    @service_call("Không thể tải đơn hàng")
    async def get_order(self, order_id: str) -> Order:
        repo = await orders_repository(self.store).load()
        order = repo.get(order_id)
        if not order:
            raise NotFoundError(ORDER_NOT_FOUND)
        return order

    @service_call("Không thể tạo đơn hàng", retry=True)
    async def create_order(self, order_data: OrderCreate) -> Order:
        repo = await orders_repository(self.store).load()
        fields = order_data.model_dump()
        fields["order_date"] = fields.get("order_date") or today()
        order = Order(id=generate_id("ORD"), **fields)
        repo.add(order)
        await repo.flush()
        logger.info(f"Order {order.id} created for dealer {order.dealer_id}")
        return order

    @service_call("Không thể cập nhật đơn hàng", retry=True)
    async def update_order(self, order_id: str, update_data: OrderUpdate) -> Order:
        repo = await orders_repository(self.store).load()
        order = repo.get(order_id)
        if not order:
            raise NotFoundError(ORDER_NOT_FOUND)

        changes = {k: v for k, v in update_data.model_dump(exclude_unset=True).items() if v is not None}
        updated = order.model_copy(update={**changes, "updated_at": utcnow_iso()})
        repo.put(updated)
        await repo.flush()
        return updated


class AllocationService(BaseService):
    """
    Allocations of warehouse stock to orders.

    This layer does not touch inventory and has no rollback primitive;
    compensation belongs to the caller (see AllocationOrchestrator).
    """

    @service_call("Không thể tải đơn hàng chờ phân phối")
    async def get_pending_orders(self) -> List[Order]:
        repo = await orders_repository(self.store).load()
        return repo.filter(lambda o: o.status in PENDING_STATUSES)

    @service_call("Không thể tải danh sách phân phối")
    async def get_allocations(self) -> List[Allocation]:
        repo = await allocations_repository(self.store).load()
        return repo.all()

    @service_call("Không thể tải phân phối")
    async def get_allocation(self, allocation_id: str) -> Allocation:
        repo = await allocations_repository(self.store).load()
        allocation = repo.get(allocation_id)
        if not allocation:
            raise NotFoundError(ALLOCATION_NOT_FOUND)
        return allocation

    @service_call("Không thể tạo phân phối")
    async def create_allocation(self, allocation_data: AllocationCreate) -> Allocation:
        """
        Append an allocation and flip the referenced order to allocated.

        Duplicate allocations for the same order are accepted here.
        """
        allocation = await run_with_retry(lambda: self._append_allocation(allocation_data))
        await run_with_retry(lambda: self._mark_order_allocated(allocation_data.order_id))
        logger.info(f"Allocation {allocation.id} created for order {allocation.order_id}")
        return allocation

    async def _append_allocation(self, allocation_data: AllocationCreate) -> Allocation:
        repo = await allocations_repository(self.store).load()
        allocation = Allocation(id=generate_id("ALLOC"), **allocation_data.model_dump())
        repo.add(allocation)
        await repo.flush()
        return allocation

    async def _mark_order_allocated(self, order_id: str) -> Optional[Order]:
        repo = await orders_repository(self.store).load()
        order = repo.get(order_id)
        if not order:
            return None
        order.status = OrderStatus.ALLOCATED
        order.updated_at = utcnow_iso()
        await repo.flush()
        return order

    @service_call("Không thể cập nhật trạng thái phân phối", retry=True)
    async def update_allocation_status(self, allocation_id: str, new_status: AllocationStatus) -> Allocation:
        # Any status may follow any other
        repo = await allocations_repository(self.store).load()
        allocation = repo.get(allocation_id)
        if not allocation:
            raise NotFoundError(ALLOCATION_NOT_FOUND)
        allocation.status = AllocationStatus(new_status)
        allocation.updated_at = utcnow_iso()
        await repo.flush()
        return allocation


class WarehouseService(BaseService):

    @service_call("Không thể tải danh sách kho")
    async def get_warehouses(self) -> List[Warehouse]:
        repo = await CollectionRepository(self.store, storage_keys.WAREHOUSES, Warehouse).load()
        return repo.all()
