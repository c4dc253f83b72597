import logging
import re
import time
from typing import Dict, List, Optional
from evdock.core.exceptions import NotFoundError, ValidationError
from evdock.models.schemas import CatalogEntry, RetailPrice, VersionOption, today
from evdock.services import storage_keys
from evdock.services.base import BaseService, service_call
from evdock.services.repository import CollectionRepository, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "__default__"


def model_slug(model_name: str) -> str:
    """Stable catalog id for a model name, e.g. 'Model Y' -> 'model-y'"""
    slug = re.sub(r"[^a-z0-9]+", "-", str(model_name or "").lower()).strip("-")
    return slug or f"mdl-{int(time.time() * 1000)}"


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Số lượng không hợp lệ. Vui lòng nhập số dương.")


def _recompute_totals(entry: CatalogEntry) -> CatalogEntry:
    entry.stock_count = sum(int(n or 0) for n in entry.color_stocks.values())
    entry.in_stock = entry.stock_count > 0
    entry.updated_at = today()
    return entry


class DealerCatalogService(BaseService):
    """
    Vehicles physically at the dealer, counted per model and color.

    Entries are created or topped up when an allocation is delivered and
    drawn down when the dealer sells.
    """

    def _repository(self) -> CollectionRepository[CatalogEntry]:
        return CollectionRepository(self.store, storage_keys.DEALER_CATALOG, CatalogEntry)

    @service_call("Không thể tải danh mục xe")
    async def get_catalog(self) -> List[CatalogEntry]:
        return (await self._repository().load()).all()

    @service_call("Không thể cập nhật danh mục xe", retry=True)
    async def add_delivered_vehicles(
        self,
        vehicle_model: str,
        color: Optional[str] = None,
        quantity: int = 1,
        version: Optional[str] = None,
        image: Optional[str] = None,
        currency: str = "VND",
    ) -> CatalogEntry:
        _check_quantity(quantity)
        repo = await self._repository().load()
        model_id = model_slug(vehicle_model)
        key = color or DEFAULT_COLOR
        entry = repo.get(model_id)

        if entry is None:
            prices = await self._load_prices()
            retail = prices.get(model_id, {})
            entry = CatalogEntry(
                id=model_id,
                name=vehicle_model,
                model=vehicle_model,
                version=version or "N/A",
                image=image,
                price=int(retail.get("price", 0)),
                currency=retail.get("currency", currency),
                color_stocks={key: quantity},
            )
            # New models go to the end of the catalog
            repo.put(_recompute_totals(entry))
        else:
            entry.color_stocks[key] = int(entry.color_stocks.get(key, 0)) + quantity
            if version:
                entry.version = version
            _recompute_totals(entry)

        await repo.flush()
        logger.info(f"Catalog {model_id}: +{quantity} {key}, stock now {entry.stock_count}")
        return entry

    @service_call("Không thể cập nhật danh mục xe", retry=True)
    async def decrement_color_stock(
        self, vehicle_model_or_id: str, color: Optional[str] = None, quantity: int = 1
    ) -> CatalogEntry:
        _check_quantity(quantity)
        repo = await self._repository().load()
        entry = repo.get(model_slug(vehicle_model_or_id))
        if entry is None:
            raise NotFoundError("Không tìm thấy mẫu xe trong danh mục đại lý")

        key = color or DEFAULT_COLOR
        previous = int(entry.color_stocks.get(key, 0))
        entry.color_stocks[key] = max(0, previous - quantity)
        _recompute_totals(entry)
        await repo.flush()
        return entry

    async def _load_prices(self) -> Dict[str, dict]:
        prices = await self.store.get_item(storage_keys.DEALER_RETAIL_PRICES)
        return prices if isinstance(prices, dict) else {}

    @service_call("Không thể tải giá bán lẻ")
    async def get_retail_prices(self) -> Dict[str, dict]:
        return await self._load_prices()

    @service_call("Không thể cập nhật giá bán lẻ")
    async def set_retail_price(self, model_id_or_name: str, price: int, currency: str = "VND") -> RetailPrice:
        model_id = model_slug(model_id_or_name)
        await run_with_retry(lambda: self._write_price(model_id, price, currency))
        await run_with_retry(lambda: self._reflect_price(model_id, price, currency))
        return RetailPrice(model_id=model_id, price=price, currency=currency)

    async def _write_price(self, model_id: str, price: int, currency: str) -> None:
        prices, version = await self.store.get_versioned(storage_keys.DEALER_RETAIL_PRICES)
        prices = prices if isinstance(prices, dict) else {}
        prices[model_id] = {"price": price, "currency": currency}
        await self.store.set_versioned(storage_keys.DEALER_RETAIL_PRICES, prices, expected_version=version)

    async def _reflect_price(self, model_id: str, price: int, currency: str) -> None:
        repo = await self._repository().load()
        entry = repo.get(model_id)
        if entry is None:
            return
        entry.price = price
        entry.currency = currency
        entry.updated_at = today()
        await repo.flush()

    @service_call("Không thể tải danh sách phiên bản")
    async def get_versions(self) -> List[VersionOption]:
        entries = (await self._repository().load()).all()
        versions = sorted({str(e.version) for e in entries if e.version and e.version != "N/A"})
        return [VersionOption(id="all", name="All Versions")] + [VersionOption(id=v, name=v) for v in versions]

    @service_call("Không thể tải danh mục xe")
    async def filter_vehicles(self, version: str = "all", search: str = "") -> List[CatalogEntry]:
        query = (search or "").lower()
        entries = (await self._repository().load()).all()
        return [
            e
            for e in entries
            if (query in e.name.lower() or query in e.model.lower())
            and (version == "all" or e.version == version)
        ]
