import pytest
from evdock.models.schemas import DealerCreate, DealerStatus, DealerUpdate
from evdock.services import storage_keys
from evdock.services.dealer_service import DealerService


class TestDealerService:

    @pytest.mark.asyncio
    async def test_dealer_lifecycle(self, store):
        """Create, update, suspend and delete a dealer"""
        service = DealerService(store)

        created = await service.create_dealer(
            DealerCreate(name="AutoWorld Hanoi", address="Hà Nội", phone="0241234567")
        )
        dealer = created.data
        assert dealer.id.startswith("DLR-")
        assert dealer.status == DealerStatus.ACTIVE

        updated = await service.update_dealer(dealer.id, DealerUpdate(rating=4.5, email="sales@autoworld.vn"))
        assert updated.data.rating == 4.5
        assert updated.data.name == "AutoWorld Hanoi"

        suspended = await service.update_dealer_status(dealer.id, DealerStatus.SUSPENDED)
        assert suspended.data.status == DealerStatus.SUSPENDED
        assert (await service.get_dealer(dealer.id)).data.email == "sales@autoworld.vn"

        deleted = await service.delete_dealer(dealer.id)
        assert deleted.data == {"id": dealer.id}
        assert (await service.get_dealers()).data == []

    @pytest.mark.asyncio
    async def test_unknown_dealer(self, store):
        """Operations on an unknown dealer are not found"""
        service = DealerService(store)
        assert (await service.get_dealer("DLR-404")).error_code == "not_found"
        assert (await service.update_dealer_status("DLR-404", DealerStatus.INACTIVE)).error_code == "not_found"
        assert (await service.delete_dealer("DLR-404")).error_code == "not_found"

    @pytest.mark.asyncio
    async def test_dealers_do_not_share_catalog_key(self, store):
        """Dealers are stored apart from the dealer catalog"""
        await DealerService(store).create_dealer(DealerCreate(name="City Motors HCMC"))

        assert await store.get_item(storage_keys.DEALER_CATALOG) is None
        [stored] = await store.get_item(storage_keys.DEALERS)
        assert stored["name"] == "City Motors HCMC"
        assert "totalSales" in stored
