import logging
from typing import List
from evdock.core.exceptions import NotFoundError
from evdock.models.schemas import Dealer, DealerCreate, DealerStatus, DealerUpdate
from evdock.services import storage_keys
from evdock.services.base import BaseService, service_call
from evdock.services.repository import CollectionRepository, generate_id

logger = logging.getLogger(__name__)

DEALER_NOT_FOUND = "Không tìm thấy đại lý"


class DealerService(BaseService):

    def _repository(self) -> CollectionRepository[Dealer]:
        return CollectionRepository(self.store, storage_keys.DEALERS, Dealer)

    @service_call("Không thể tải danh sách đại lý")
    async def get_dealers(self) -> List[Dealer]:
        return (await self._repository().load()).all()

    @service_call("Không thể tải đại lý")
    async def get_dealer(self, dealer_id: str) -> Dealer:
        dealer = (await self._repository().load()).get(dealer_id)
        if not dealer:
            raise NotFoundError(DEALER_NOT_FOUND)
        return dealer

    @service_call("Không thể tạo đại lý", retry=True)
    async def create_dealer(self, dealer_data: DealerCreate) -> Dealer:
        repo = await self._repository().load()
        dealer = Dealer(id=generate_id("DLR"), **dealer_data.model_dump())
        repo.add(dealer)
        await repo.flush()
        logger.info(f"Dealer {dealer.id} created: {dealer.name}")
        return dealer

    @service_call("Không thể cập nhật đại lý", retry=True)
    async def update_dealer(self, dealer_id: str, update_data: DealerUpdate) -> Dealer:
        repo = await self._repository().load()
        dealer = repo.get(dealer_id)
        if not dealer:
            raise NotFoundError(DEALER_NOT_FOUND)
        changes = {k: v for k, v in update_data.model_dump(exclude_unset=True).items() if v is not None}
        updated = dealer.model_copy(update=changes)
        repo.put(updated)
        await repo.flush()
        return updated

    async def update_dealer_status(self, dealer_id: str, status: DealerStatus):
        return await self.update_dealer(dealer_id, DealerUpdate(status=status))

    @service_call("Không thể xóa đại lý", retry=True)
    async def delete_dealer(self, dealer_id: str) -> dict:
        repo = await self._repository().load()
        if not repo.remove(dealer_id):
            raise NotFoundError(DEALER_NOT_FOUND)
        await repo.flush()
        logger.info(f"Dealer {dealer_id} deleted")
        return {"id": dealer_id}
