import pytest
from evdock.core.exceptions import StorageError
from evdock.models.schemas import (
    Allocation,
    AllocationCreate,
    AllocationIntent,
    AllocationRequest,
    AllocationStatus,
    IntentState,
    OrderCreate,
    OrderStatus,
    OrderUpdate,
    ServiceResult,
    today,
)
from evdock.services import storage_keys
from evdock.services.allocation_saga import AllocationOrchestrator
from evdock.services.catalog_service import DealerCatalogService
from evdock.services.inventory_service import InventoryService
from evdock.services.order_service import AllocationService, OrderService, allocations_repository
from evdock.services.repository import CollectionRepository
from evdock.services.seed import ensure_seed_data


class FailingAllocationService(AllocationService):
    """Allocation ledger that refuses every new allocation"""

    async def create_allocation(self, allocation_data):
        return ServiceResult.fail("Không thể tạo phân phối", "storage_failure")


class HalfWrittenAllocationService(AllocationService):
    """Writes the allocation, then reports a failure"""

    async def create_allocation(self, allocation_data):
        await super().create_allocation(allocation_data)
        return ServiceResult.fail("Không thể tạo phân phối", "storage_failure")


class BrokenRestoreInventory(InventoryService):
    """Inventory that can be reduced but never restored"""

    async def restore_inventory_quantity(self, vehicle_model, color, warehouse_location, amount):
        return ServiceResult.fail("Không thể cập nhật tồn kho", "storage_failure")


class OrderFlipFailsAllocationService(AllocationService):
    """Writes the allocation but cannot update the order"""

    async def _mark_order_allocated(self, order_id):
        raise StorageError("Unable to save orders")


class FlakyIntentRepository(CollectionRepository):
    """Intent log that cannot be saved once an intent reaches fail_on"""

    def __init__(self, store, fail_on):
        super().__init__(store, storage_keys.ALLOCATION_INTENTS, AllocationIntent)
        self.fail_on = fail_on

    async def flush(self):
        if any(i.state == self.fail_on for i in self.all()):
            raise StorageError("Unable to save allocation_intents")
        await super().flush()


class FlakyIntentOrchestrator(AllocationOrchestrator):

    def __init__(self, store, fail_on, **kwargs):
        super().__init__(store, **kwargs)
        self.fail_on = fail_on

    def _intents(self):
        return FlakyIntentRepository(self.store, self.fail_on)


class BlindLookupOrchestrator(AllocationOrchestrator):
    """Cannot read back the allocation ledger while compensating"""

    async def _find_allocation(self, order_id):
        raise StorageError("Unable to load allocations")


class FakeRedis:
    def __init__(self):
        self.data = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def delete(self, key):
        self.data.pop(key, None)


async def quantity_of(store, item_id):
    return (await InventoryService(store).get_inventory_item(item_id)).data.quantity


async def total_quantity(store):
    return sum(i.quantity for i in (await InventoryService(store).get_inventory()).data)


async def intents(store):
    return (await CollectionRepository(store, storage_keys.ALLOCATION_INTENTS, AllocationIntent).load()).all()


class TestAllocationSaga:

    @pytest.mark.asyncio
    async def test_successful_allocation(self, store):
        """A successful allocation reduces stock by exactly the order quantity"""
        await ensure_seed_data(store)
        before = await total_quantity(store)
        orchestrator = AllocationOrchestrator(store)

        result = await orchestrator.allocate_order(
            AllocationRequest(order_id="ORD001", warehouse_location="WH001", notes="Giao sớm")
        )

        assert result.success, result.error
        allocation = result.data
        assert allocation.order_id == "ORD001"
        assert allocation.quantity == 5
        assert allocation.notes == "Giao sớm"
        assert allocation.estimated_delivery == today()
        assert await total_quantity(store) == before - 5
        assert await quantity_of(store, "INV001") == 15

        order = (await OrderService(store).get_order("ORD001")).data
        assert order.status == OrderStatus.ALLOCATED

        [intent] = await intents(store)
        assert intent.state == IntentState.COMPLETED
        assert intent.allocation_id == allocation.id

    @pytest.mark.asyncio
    async def test_insufficient_stock_creates_nothing(self, store):
        """Insufficient stock leaves allocations and order untouched"""
        await ensure_seed_data(store)
        order = (
            await OrderService(store).create_order(
                OrderCreate(dealer_id="DEALER002", vehicle_model="Model Y", quantity=5, color="White")
            )
        ).data
        orchestrator = AllocationOrchestrator(store)

        result = await orchestrator.allocate_order(AllocationRequest(order_id=order.id, warehouse_location="WH001"))

        assert not result.success
        assert result.error_code == "insufficient_stock"
        assert result.error.startswith("Không đủ xe trong kho")
        assert await quantity_of(store, "INV002") == 3
        assert (await AllocationService(store).get_allocations()).data == []
        assert (await OrderService(store).get_order(order.id)).data.status == OrderStatus.PENDING

        [intent] = await intents(store)
        assert intent.state == IntentState.ABORTED

    @pytest.mark.asyncio
    async def test_missing_inventory_row(self, store):
        """No inventory row for the order means no allocation"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store)

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD003", warehouse_location="WH001"))

        assert result.error_code == "not_found"
        assert (await AllocationService(store).get_allocations()).data == []
        assert (await OrderService(store).get_order("ORD003")).data.status == OrderStatus.PENDING_ALLOCATION

    @pytest.mark.asyncio
    async def test_failed_allocation_is_compensated(self, store):
        """A failed allocation gives the reduced stock back"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store, allocations=FailingAllocationService(store))

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert not result.success
        assert result.error == "Không thể tạo phân phối"
        assert await quantity_of(store, "INV001") == 20
        assert (await OrderService(store).get_order("ORD001")).data.status == OrderStatus.PENDING

        [intent] = await intents(store)
        assert intent.state == IntentState.COMPENSATED

    @pytest.mark.asyncio
    async def test_allocation_written_despite_error_is_kept(self, store):
        """An allocation that was written before the error is kept with its stock"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store, allocations=HalfWrittenAllocationService(store))

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.success
        assert result.data.order_id == "ORD001"
        assert await quantity_of(store, "INV001") == 15
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_restore_is_reported_and_reconciled(self, store):
        """A failed restore is reported and repaired by reconcile"""
        await ensure_seed_data(store)
        broken = AllocationOrchestrator(
            store,
            inventory=BrokenRestoreInventory(store),
            allocations=FailingAllocationService(store),
        )

        result = await broken.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.error_code == "compensation_failed"
        assert await quantity_of(store, "INV001") == 15
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPENSATION_FAILED

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.compensated == [intent.id]
        assert await quantity_of(store, "INV001") == 20
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPENSATED

        # Nothing left to do on a second pass
        again = (await AllocationOrchestrator(store).reconcile()).data
        assert again.compensated == [] and again.failed == []

    @pytest.mark.asyncio
    async def test_reconcile_keeps_failing_restores_open(self, store):
        """An intent whose restore keeps failing stays open"""
        await ensure_seed_data(store)
        broken = AllocationOrchestrator(
            store,
            inventory=BrokenRestoreInventory(store),
            allocations=FailingAllocationService(store),
        )
        await broken.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        report = (await broken.reconcile()).data

        assert len(report.failed) == 1
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPENSATION_FAILED

    @pytest.mark.asyncio
    async def test_reconcile_interrupted_intents(self, store):
        """Reconcile reviews, completes or compensates each open intent"""
        await ensure_seed_data(store)
        allocation = (
            await AllocationService(store).create_allocation(
                AllocationCreate(
                    order_id="ORD002", vehicle_model="Model Y", color="White", quantity=3, warehouse_location="WH001"
                )
            )
        ).data
        repo = await CollectionRepository(store, storage_keys.ALLOCATION_INTENTS, AllocationIntent).load()
        for intent in (
            AllocationIntent(id="INT-A", order_id="ORD001", vehicle_model="Model X", color="Black",
                             warehouse_location="WH001", quantity=5, state=IntentState.PENDING),
            AllocationIntent(id="INT-B", order_id="ORD002", vehicle_model="Model Y", color="White",
                             warehouse_location="WH001", quantity=3, state=IntentState.REDUCED),
            AllocationIntent(id="INT-C", order_id="ORD003", vehicle_model="Model V", color="Silver",
                             warehouse_location="WH003", quantity=2, state=IntentState.REDUCED),
        ):
            repo.add(intent)
        await repo.flush()

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.needs_review == ["INT-A"]
        assert report.completed == ["INT-B"]
        assert report.compensated == ["INT-C"]
        assert await quantity_of(store, "INV003") == 10
        states = {i.id: i for i in await intents(store)}
        assert states["INT-A"].state == IntentState.NEEDS_REVIEW
        assert states["INT-B"].allocation_id == allocation.id

    @pytest.mark.asyncio
    async def test_order_can_only_be_allocated_once(self, store):
        """A second allocation of the same order is a duplicate"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store)
        request = AllocationRequest(order_id="ORD001", warehouse_location="WH001")

        first = await orchestrator.allocate_order(request)
        second = await orchestrator.allocate_order(request)

        assert first.success
        assert second.error_code == "duplicate"
        assert await quantity_of(store, "INV001") == 15
        assert len((await AllocationService(store).get_allocations()).data) == 1

    @pytest.mark.asyncio
    async def test_precondition_failures(self, store):
        """Unknown order, missing fields and non-pending orders are rejected before any stock moves"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store)

        missing = await orchestrator.allocate_order(AllocationRequest(order_id="ORD404", warehouse_location="WH001"))
        assert missing.error_code == "not_found"

        blank = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="  "))
        assert blank.error_code == "validation"

        no_date = await orchestrator.allocate_order(
            AllocationRequest(order_id="ORD001", warehouse_location="WH001", estimated_delivery="")
        )
        assert no_date.error_code == "validation"
        assert no_date.error == "Vui lòng điền đầy đủ thông tin bắt buộc"

        await OrderService(store).update_order("ORD001", OrderUpdate(status=OrderStatus.CANCELLED))
        cancelled = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))
        assert cancelled.error_code == "validation"
        assert await quantity_of(store, "INV001") == 20
        assert await intents(store) == []

    @pytest.mark.asyncio
    async def test_redis_lock_held_elsewhere(self, store):
        """A redis lock held by another process blocks the allocation"""
        await ensure_seed_data(store)
        redis = FakeRedis()
        redis.set("inventory_lock:Model X:Black:WH001", "locked", nx=True, ex=30)
        orchestrator = AllocationOrchestrator(store, redis_client=redis)

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.error_code == "locked"
        assert await quantity_of(store, "INV001") == 20
        # The foreign lock is left untouched
        assert list(redis.data) == ["inventory_lock:Model X:Black:WH001"]

    @pytest.mark.asyncio
    async def test_redis_locks_released_after_allocation(self, store):
        """Redis locks are released once the allocation is done"""
        await ensure_seed_data(store)
        redis = FakeRedis()
        orchestrator = AllocationOrchestrator(store, redis_client=redis)

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.success
        assert redis.data == {}

    @pytest.mark.asyncio
    async def test_delivery_feeds_dealer_catalog(self, store):
        """Only a delivered allocation reaches the dealer catalog"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store)
        allocation = (
            await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))
        ).data

        shipped = await orchestrator.update_allocation_status(allocation.id, AllocationStatus.SHIPPED)
        assert shipped.success
        assert (await DealerCatalogService(store).get_catalog()).data == []

        delivered = await orchestrator.update_allocation_status(allocation.id, AllocationStatus.DELIVERED)
        assert delivered.data.status == AllocationStatus.DELIVERED

        [entry] = (await DealerCatalogService(store).get_catalog()).data
        assert entry.id == "model-x"
        assert entry.color_stocks == {"Black": 5}
        assert entry.in_stock

    @pytest.mark.asyncio
    async def test_intents_filtered_by_state(self, store):
        """Intents can be listed by state"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store)
        await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))
        await orchestrator.allocate_order(AllocationRequest(order_id="ORD003", warehouse_location="WH001"))

        assert len((await orchestrator.get_intents()).data) == 2
        [aborted] = (await orchestrator.get_intents(IntentState.ABORTED)).data
        assert aborted.order_id == "ORD003"


class TestIntentLogFailures:
    """Lost intent writes must never restore stock twice or strand an order"""

    @pytest.mark.asyncio
    async def test_unrecorded_restore_is_not_repeated(self, store):
        """A restore whose compensated state was never saved goes to review, not to a second restore"""
        await ensure_seed_data(store)
        orchestrator = FlakyIntentOrchestrator(
            store, IntentState.COMPENSATED, allocations=FailingAllocationService(store)
        )

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.error == "Không thể tạo phân phối"
        assert await quantity_of(store, "INV001") == 20
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPENSATING

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.needs_review == [intent.id]
        assert report.compensated == []
        assert await quantity_of(store, "INV001") == 20
        [intent] = await intents(store)
        assert intent.state == IntentState.NEEDS_REVIEW

    @pytest.mark.asyncio
    async def test_restore_skipped_when_compensating_not_saved(self, store):
        """No restore runs unless the intent was first marked compensating"""
        await ensure_seed_data(store)
        orchestrator = FlakyIntentOrchestrator(
            store, IntentState.COMPENSATING, allocations=FailingAllocationService(store)
        )

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.error_code == "compensation_failed"
        assert await quantity_of(store, "INV001") == 15
        [intent] = await intents(store)
        assert intent.state == IntentState.REDUCED

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.compensated == [intent.id]
        assert await quantity_of(store, "INV001") == 20

    @pytest.mark.asyncio
    async def test_failed_order_update_is_finished(self, store):
        """An allocation written without its order update still leaves the order allocated"""
        await ensure_seed_data(store)
        orchestrator = AllocationOrchestrator(store, allocations=OrderFlipFailsAllocationService(store))

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.success
        assert await quantity_of(store, "INV001") == 15
        assert (await OrderService(store).get_order("ORD001")).data.status == OrderStatus.ALLOCATED
        pending = (await AllocationService(store).get_pending_orders()).data
        assert "ORD001" not in [o.id for o in pending]
        [intent] = await intents(store)
        assert intent.state == IntentState.COMPLETED
        assert intent.allocation_id == result.data.id

    @pytest.mark.asyncio
    async def test_reconcile_allocates_order_left_pending(self, store):
        """Reconcile flips the order when it finds the allocation of an open intent"""
        await ensure_seed_data(store)
        allocations = await allocations_repository(store).load()
        allocations.add(
            Allocation(
                id="ALLOC-1", order_id="ORD001", vehicle_model="Model X", color="Black",
                quantity=5, warehouse_location="WH001",
            )
        )
        await allocations.flush()
        repo = await CollectionRepository(store, storage_keys.ALLOCATION_INTENTS, AllocationIntent).load()
        repo.add(
            AllocationIntent(
                id="INT-D", order_id="ORD001", vehicle_model="Model X", color="Black",
                warehouse_location="WH001", quantity=5, state=IntentState.REDUCED,
            )
        )
        await repo.flush()

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.completed == ["INT-D"]
        assert (await OrderService(store).get_order("ORD001")).data.status == OrderStatus.ALLOCATED
        [intent] = await intents(store)
        assert intent.allocation_id == "ALLOC-1"

    @pytest.mark.asyncio
    async def test_reconcile_reviews_interrupted_restore(self, store):
        """An intent found in compensating is never restored automatically"""
        await ensure_seed_data(store)
        repo = await CollectionRepository(store, storage_keys.ALLOCATION_INTENTS, AllocationIntent).load()
        repo.add(
            AllocationIntent(
                id="INT-E", order_id="ORD003", vehicle_model="Model V", color="Silver",
                warehouse_location="WH003", quantity=2, state=IntentState.COMPENSATING,
            )
        )
        await repo.flush()

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.needs_review == ["INT-E"]
        assert await quantity_of(store, "INV003") == 8

    @pytest.mark.asyncio
    async def test_unreadable_ledger_leaves_stock_reduced(self, store):
        """Stock is not restored while it is unknown whether an allocation was written"""
        await ensure_seed_data(store)
        orchestrator = BlindLookupOrchestrator(store, allocations=HalfWrittenAllocationService(store))

        result = await orchestrator.allocate_order(AllocationRequest(order_id="ORD001", warehouse_location="WH001"))

        assert result.error_code == "compensation_failed"
        assert await quantity_of(store, "INV001") == 15
        [intent] = await intents(store)
        assert intent.state == IntentState.REDUCED

        report = (await AllocationOrchestrator(store).reconcile()).data

        assert report.completed == [intent.id]
        assert await quantity_of(store, "INV001") == 15
        assert (await OrderService(store).get_order("ORD001")).data.status == OrderStatus.ALLOCATED
