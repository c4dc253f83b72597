import logging
from typing import List
from evdock.core.exceptions import DuplicateError, NotFoundError
from evdock.models.schemas import (
    Promotion,
    PromotionCreate,
    PromotionStats,
    PromotionStatus,
    PromotionUpdate,
    utcnow_iso,
)
from evdock.services import storage_keys
from evdock.services.base import BaseService, service_call
from evdock.services.repository import CollectionRepository, generate_id

logger = logging.getLogger(__name__)

PROMOTION_NOT_FOUND = "Không tìm thấy khuyến mãi"


class PromotionService(BaseService):
    """Dealer promotion campaigns"""

    def _repository(self) -> CollectionRepository[Promotion]:
        return CollectionRepository(self.store, storage_keys.PROMOTIONS, Promotion)

    @service_call("Không thể tải danh sách khuyến mãi")
    async def get_promotions(self) -> List[Promotion]:
        return (await self._repository().load()).all()

    @service_call("Không thể tải khuyến mãi")
    async def get_promotion(self, promotion_id: str) -> Promotion:
        promotion = (await self._repository().load()).get(promotion_id)
        if not promotion:
            raise NotFoundError(PROMOTION_NOT_FOUND)
        return promotion

    @service_call("Không thể tạo khuyến mãi", retry=True)
    async def add_promotion(self, promotion_data: PromotionCreate) -> Promotion:
        repo = await self._repository().load()
        if repo.find(lambda p: p.code.lower() == promotion_data.code.lower()):
            raise DuplicateError(f"Mã khuyến mãi đã tồn tại: {promotion_data.code}")
        promotion = Promotion(id=generate_id("PROMO"), **promotion_data.model_dump())
        repo.add(promotion)
        await repo.flush()
        logger.info(f"Promotion {promotion.id} ({promotion.code}) created")
        return promotion

    @service_call("Không thể cập nhật khuyến mãi", retry=True)
    async def update_promotion(self, promotion_id: str, update_data: PromotionUpdate) -> Promotion:
        repo = await self._repository().load()
        promotion = repo.get(promotion_id)
        if not promotion:
            raise NotFoundError(PROMOTION_NOT_FOUND)
        changes = {k: v for k, v in update_data.model_dump(exclude_unset=True).items() if v is not None}
        updated = promotion.model_copy(update={**changes, "updated_at": utcnow_iso()})
        repo.put(updated)
        await repo.flush()
        return updated

    @service_call("Không thể xóa khuyến mãi", retry=True)
    async def delete_promotion(self, promotion_id: str) -> dict:
        repo = await self._repository().load()
        if not repo.remove(promotion_id):
            raise NotFoundError(PROMOTION_NOT_FOUND)
        await repo.flush()
        return {"id": promotion_id}

    @service_call("Không thể tìm kiếm khuyến mãi")
    async def search_promotions(self, query: str) -> List[Promotion]:
        q = (query or "").lower()
        return (await self._repository().load()).filter(
            lambda p: q in p.name.lower() or q in p.code.lower() or q in p.description.lower()
        )

    @service_call("Không thể lọc khuyến mãi")
    async def get_promotions_by_status(self, status: PromotionStatus) -> List[Promotion]:
        return (await self._repository().load()).filter(lambda p: p.status == status)

    @service_call("Không thể tải khuyến mãi cho nhân viên")
    async def get_promotions_for_staff(self) -> List[Promotion]:
        """Staff only see active promotions published to customers"""
        return (await self._repository().load()).filter(
            lambda p: p.status == PromotionStatus.ACTIVE and p.target_audience == "customers"
        )

    @service_call("Không thể tải thống kê khuyến mãi")
    async def get_promotion_stats(self) -> PromotionStats:
        promotions = (await self._repository().load()).all()

        def count(status: PromotionStatus) -> int:
            return sum(1 for p in promotions if p.status == status)

        return PromotionStats(
            total=len(promotions),
            active=count(PromotionStatus.ACTIVE),
            scheduled=count(PromotionStatus.SCHEDULED),
            expired=count(PromotionStatus.EXPIRED),
            paused=count(PromotionStatus.PAUSED),
            draft=count(PromotionStatus.DRAFT),
        )
