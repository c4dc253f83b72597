import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Dict, List, Optional
from evdock.core.exceptions import (
    AllocationLockedError,
    ConcurrencyConflictError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from evdock.models.schemas import (
    Allocation,
    AllocationCreate,
    AllocationIntent,
    AllocationRequest,
    AllocationStatus,
    IntentState,
    Order,
    OrderStatus,
    ReconcileReport,
    ServiceResult,
    utcnow_iso,
)
from evdock.services import storage_keys
from evdock.services.catalog_service import DealerCatalogService
from evdock.services.inventory_service import InventoryService
from evdock.services.order_service import (
    ORDER_NOT_FOUND,
    PENDING_STATUSES,
    AllocationService,
    allocations_repository,
    orders_repository,
)
from evdock.services.repository import CollectionRepository, generate_id, run_with_retry
from evdock.services.storage_service import StorageService

logger = logging.getLogger(__name__)

ALLOCATION_FAILED = "Không thể phân phối xe"
COMPENSATION_FAILED = (
    "Không thể phân phối xe. Tồn kho chưa được hoàn lại, hệ thống sẽ đối soát lại sau."
)

# Intents reconcile() still has to look at
OPEN_STATES = (
    IntentState.PENDING,
    IntentState.REDUCED,
    IntentState.COMPENSATING,
    IntentState.COMPENSATION_FAILED,
)


class LockRegistry:
    """In-process locks, one per order and per inventory row"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


def _order_lock_key(order_id: str) -> str:
    return f"order_lock:{order_id}"


def _inventory_lock_key(vehicle_model: str, color: str, warehouse_location: str) -> str:
    return f"inventory_lock:{vehicle_model}:{color}:{warehouse_location}"


class AllocationOrchestrator:
    """
    Allocates an order from a warehouse as a two-step saga.

    1. reduce inventory for (model, color, warehouse)
    2. create the allocation (which flips the order to allocated)
    3. if step 2 fails, restore the inventory taken in step 1

    Every run is recorded in an intent log before inventory is touched, so
    a crash between the steps is found and repaired by reconcile().
    """

    def __init__(
        self,
        store: StorageService,
        inventory: Optional[InventoryService] = None,
        allocations: Optional[AllocationService] = None,
        catalog: Optional[DealerCatalogService] = None,
        locks: Optional[LockRegistry] = None,
        redis_client: Any = None,
        lock_timeout: int = 30,
        latency_ms: Optional[int] = None,
    ):
        self.store = store
        self.inventory = inventory or InventoryService(store, latency_ms)
        self.allocations = allocations or AllocationService(store, latency_ms)
        self.catalog = catalog or DealerCatalogService(store, latency_ms)
        self.locks = locks or LockRegistry()
        self.redis_client = redis_client
        self.lock_timeout = lock_timeout

    # --- locking ---

    @asynccontextmanager
    async def _locked(self, keys: List[str]):
        """Hold the local locks (and redis locks when configured) for keys"""
        keys = sorted(set(keys))
        acquired = []
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self.locks.get(key))
            try:
                if self.redis_client is not None:
                    for key in keys:
                        if self.redis_client.set(key, "locked", nx=True, ex=self.lock_timeout):
                            acquired.append(key)
                        else:
                            raise AllocationLockedError(
                                "Một phân phối khác đang xử lý đơn hàng hoặc mẫu xe này. Vui lòng thử lại."
                            )
                yield
            finally:
                for key in acquired:
                    self.redis_client.delete(key)

    # --- intent log ---

    def _intents(self) -> CollectionRepository[AllocationIntent]:
        return CollectionRepository(self.store, storage_keys.ALLOCATION_INTENTS, AllocationIntent)

    async def _record_intent(self, intent: AllocationIntent) -> AllocationIntent:
        async def write():
            repo = await self._intents().load()
            repo.add(intent)
            await repo.flush()
            return intent

        return await run_with_retry(write)

    async def _transition(self, intent: AllocationIntent, state: IntentState, **changes) -> bool:
        """Move an intent to a new state; failures are logged, never raised"""

        async def write():
            repo = await self._intents().load()
            stored = repo.get(intent.id)
            if stored is None:
                return None
            stored.state = state
            stored.updated_at = utcnow_iso()
            for field, value in changes.items():
                setattr(stored, field, value)
            await repo.flush()
            return stored

        try:
            await run_with_retry(write)
        except (StorageError, ConcurrencyConflictError) as e:
            logger.error(
                f"Unable to move intent {intent.id} to {state.value}: {str(e)}",
                extra={"intent_id": intent.id, "order_id": intent.order_id},
            )
            return False
        intent.state = state
        for field, value in changes.items():
            setattr(intent, field, value)
        return True

    async def get_intents(self, state: Optional[IntentState] = None) -> ServiceResult:
        try:
            repo = await self._intents().load()
        except StorageError as e:
            logger.error(f"Error loading allocation intents: {str(e)}")
            return ServiceResult.fail("Không thể tải nhật ký phân phối", "storage_failure")
        if state is None:
            return ServiceResult.ok(repo.all())
        return ServiceResult.ok(repo.filter(lambda i: i.state == state))

    # --- allocation flow ---

    async def _load_pending_order(self, order_id: str) -> Order:
        order = (await orders_repository(self.store).load()).get(order_id)
        if not order:
            raise NotFoundError(ORDER_NOT_FOUND)

        existing = (await allocations_repository(self.store).load()).find(lambda a: a.order_id == order_id)
        if existing:
            raise DuplicateError(f"Đơn hàng {order_id} đã được phân phối ({existing.id})")
        if order.status not in PENDING_STATUSES:
            raise ValidationError(f"Đơn hàng {order_id} không ở trạng thái chờ phân phối")
        return order

    async def allocate_order(self, request: AllocationRequest) -> ServiceResult:
        """Run the saga for one order; failures come back as a failed ServiceResult"""
        warehouse = (request.warehouse_location or "").strip()
        if not warehouse or not (request.estimated_delivery or "").strip():
            return ServiceResult.fail("Vui lòng điền đầy đủ thông tin bắt buộc", ValidationError.code)

        try:
            order = (await orders_repository(self.store).load()).get(request.order_id)
            if not order:
                raise NotFoundError(ORDER_NOT_FOUND)
            keys = [
                _order_lock_key(order.id),
                _inventory_lock_key(order.vehicle_model, order.color, warehouse),
            ]
            async with self._locked(keys):
                # Re-read under the lock
                order = await self._load_pending_order(request.order_id)
                return await self._run(order, warehouse, request)
        except LedgerError as e:
            logger.warning(f"Allocation of order {request.order_id} rejected: {e.message}")
            return ServiceResult.fail(e.message, e.code)
        except (StorageError, ConcurrencyConflictError) as e:
            logger.error(f"Error allocating order {request.order_id}: {str(e)}")
            return ServiceResult.fail(ALLOCATION_FAILED, "storage_failure")

    async def _run(self, order: Order, warehouse: str, request: AllocationRequest) -> ServiceResult:
        intent = await self._record_intent(
            AllocationIntent(
                id=generate_id("INT"),
                order_id=order.id,
                vehicle_model=order.vehicle_model,
                color=order.color,
                warehouse_location=warehouse,
                quantity=order.quantity,
            )
        )
        log_extra = {"intent_id": intent.id, "order_id": order.id}

        # Step 1: check availability and reduce
        reduced = await self.inventory.reduce_inventory_quantity(
            order.vehicle_model, order.color, warehouse, order.quantity
        )
        if not reduced.success:
            await self._transition(intent, IntentState.ABORTED, error=reduced.error)
            return reduced
        await self._transition(intent, IntentState.REDUCED)

        # Step 2: create allocation
        created = await self.allocations.create_allocation(
            AllocationCreate(
                order_id=order.id,
                dealer_id=order.dealer_id,
                dealer_name=order.dealer_name,
                vehicle_model=order.vehicle_model,
                quantity=order.quantity,
                color=order.color,
                warehouse_location=warehouse,
                estimated_delivery=request.estimated_delivery,
                notes=request.notes,
            )
        )
        if created.success:
            await self._transition(intent, IntentState.COMPLETED, allocation_id=created.data.id)
            logger.info(
                f"Allocated {order.quantity} x {order.vehicle_model} ({order.color}) "
                f"from {warehouse} to order {order.id}",
                extra=log_extra,
            )
            return created

        # Step 3: compensate
        logger.warning(f"Allocation step failed for order {order.id}: {created.error}", extra=log_extra)
        return await self._compensate(intent, created)

    async def _find_allocation(self, order_id: str) -> Optional[Allocation]:
        return (await allocations_repository(self.store).load()).find(lambda a: a.order_id == order_id)

    async def _settle_order(self, order_id: str) -> bool:
        """Flip a still pending order to allocated; False if the write failed"""

        async def flip():
            repo = await orders_repository(self.store).load()
            order = repo.get(order_id)
            if order is None or order.status not in PENDING_STATUSES:
                return order
            order.status = OrderStatus.ALLOCATED
            order.updated_at = utcnow_iso()
            await repo.flush()
            return order

        try:
            await run_with_retry(flip)
        except (StorageError, ConcurrencyConflictError) as e:
            logger.error(f"Unable to mark order {order_id} allocated: {str(e)}", extra={"order_id": order_id})
            return False
        return True

    async def _restore(self, intent: AllocationIntent) -> ServiceResult:
        """
        Give back the stock an intent took.

        The intent is moved to compensating first; if that write fails
        nothing is restored. An intent found in compensating later may or
        may not have been restored and is left for review.
        """
        if not await self._transition(intent, IntentState.COMPENSATING):
            return ServiceResult.fail(COMPENSATION_FAILED, "compensation_failed")

        restored = await self.inventory.restore_inventory_quantity(
            intent.vehicle_model, intent.color, intent.warehouse_location, intent.quantity
        )
        if restored.success:
            await self._transition(intent, IntentState.COMPENSATED)
            return restored

        await self._transition(intent, IntentState.COMPENSATION_FAILED, error=restored.error)
        return ServiceResult.fail(restored.error, "compensation_failed")

    async def _compensate(self, intent: AllocationIntent, failure: ServiceResult) -> ServiceResult:
        log_extra = {"intent_id": intent.id, "order_id": intent.order_id}

        # The allocation may have been written before the failure (order update failed)
        try:
            allocation = await self._find_allocation(intent.order_id)
        except StorageError as e:
            # Unknown whether the allocation exists; leave the intent reduced for reconcile()
            logger.error(f"Error looking up allocation for order {intent.order_id}: {str(e)}", extra=log_extra)
            return ServiceResult.fail(COMPENSATION_FAILED, "compensation_failed")
        if allocation is not None:
            logger.warning(
                f"Allocation {allocation.id} was recorded despite the error; keeping inventory reduced",
                extra=log_extra,
            )
            if await self._settle_order(intent.order_id):
                await self._transition(intent, IntentState.COMPLETED, allocation_id=allocation.id)
            # Otherwise the intent stays reduced and reconcile() finishes the order
            return ServiceResult.ok(allocation)

        restored = await self._restore(intent)
        if restored.success:
            return failure

        logger.error(
            f"Compensation failed for order {intent.order_id}: {intent.quantity} x "
            f"{intent.vehicle_model} ({intent.color}) at {intent.warehouse_location} "
            f"may remain deducted without an allocation",
            extra=log_extra,
        )
        return ServiceResult.fail(COMPENSATION_FAILED, "compensation_failed")

    async def update_allocation_status(self, allocation_id: str, new_status: AllocationStatus) -> ServiceResult:
        """Update an allocation; deliveries are pushed into the dealer catalog"""
        result = await self.allocations.update_allocation_status(allocation_id, new_status)
        if result.success and AllocationStatus(new_status) == AllocationStatus.DELIVERED:
            allocation = result.data
            catalog = await self.catalog.add_delivered_vehicles(
                vehicle_model=allocation.vehicle_model,
                color=allocation.color,
                quantity=allocation.quantity or 1,
            )
            if not catalog.success:
                logger.error(f"Error updating dealer catalog after delivery of {allocation_id}: {catalog.error}")
        return result

    # --- recovery ---

    async def reconcile(self) -> ServiceResult:
        """
        Settle intents left open by a crash or a failed compensation.

        - pending / compensating: whether the reduce or the restore happened
          is unknown, mark needs_review for an operator (a pending intent
          whose allocation exists is completed instead)
        - an allocation exists for the order: the saga finished, make sure
          the order is allocated and mark completed
        - reduced / compensation_failed without allocation: restore inventory
        Intents whose order is being allocated right now are skipped.
        """
        report = ReconcileReport()
        try:
            intents = (await self._intents().load()).filter(lambda i: i.state in OPEN_STATES)
            allocations = await allocations_repository(self.store).load()
        except StorageError as e:
            logger.error(f"Error loading intents for reconciliation: {str(e)}")
            return ServiceResult.fail("Không thể đối soát phân phối", "storage_failure")

        for intent in intents:
            if self.locks.is_locked(_order_lock_key(intent.order_id)):
                continue
            log_extra = {"intent_id": intent.id, "order_id": intent.order_id}

            if intent.state == IntentState.COMPENSATING:
                await self._transition(intent, IntentState.NEEDS_REVIEW)
                logger.warning(f"Intent {intent.id} interrupted during restore; needs review", extra=log_extra)
                report.needs_review.append(intent.id)
                continue

            allocation = allocations.find(lambda a: a.order_id == intent.order_id)
            if allocation is not None:
                if await self._settle_order(intent.order_id):
                    await self._transition(intent, IntentState.COMPLETED, allocation_id=allocation.id)
                    report.completed.append(intent.id)
                else:
                    report.failed.append(intent.id)
                continue

            if intent.state == IntentState.PENDING:
                await self._transition(intent, IntentState.NEEDS_REVIEW)
                logger.warning(f"Intent {intent.id} interrupted before reduce finished; needs review", extra=log_extra)
                report.needs_review.append(intent.id)
                continue

            restored = await self._restore(intent)
            if restored.success:
                logger.info(f"Restored {intent.quantity} units for intent {intent.id}", extra=log_extra)
                report.compensated.append(intent.id)
            else:
                logger.error(f"Reconciliation restore failed for intent {intent.id}: {restored.error}", extra=log_extra)
                report.failed.append(intent.id)

        return ServiceResult.ok(report)
