import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from evdock.api.deps import APP_LOCKS
from evdock.api.routes import allocations, catalog, dealers, inventory, orders, promotions, warehouses
from evdock.core.config import HOST, PORT, RECONCILE_ON_STARTUP, SEED_DATA
from evdock.core.database import SessionLocal, engine
from evdock.core.log_config import configure_logging
from evdock.models.database import Base
from evdock.services.allocation_saga import AllocationOrchestrator
from evdock.services.seed import ensure_seed_data
from evdock.services.storage_service import StorageService

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        store = StorageService(db)
        if SEED_DATA:
            seeded = await ensure_seed_data(store)
            if seeded:
                logger.info(f"Seeded demo data: {', '.join(seeded)}")
        if RECONCILE_ON_STARTUP:
            result = await AllocationOrchestrator(store, locks=APP_LOCKS).reconcile()
            if result.success:
                report = result.data
                logger.info(
                    f"Startup reconciliation: {len(report.completed)} completed, "
                    f"{len(report.compensated)} compensated, {len(report.needs_review)} need review, "
                    f"{len(report.failed)} failed"
                )
    finally:
        db.close()
    yield


app = FastAPI(
    title="EVDock Backend",
    description="Inventory, orders and allocation for EV dealer distribution",
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(inventory.router, prefix="/api/v1/inventory", tags=["inventory"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(allocations.router, prefix="/api/v1/allocations", tags=["allocations"])
app.include_router(warehouses.router, prefix="/api/v1/warehouses", tags=["warehouses"])
app.include_router(catalog.router, prefix="/api/v1/dealer-catalog", tags=["dealer-catalog"])
app.include_router(dealers.router, prefix="/api/v1/dealers", tags=["dealers"])
app.include_router(promotions.router, prefix="/api/v1/promotions", tags=["promotions"])


@app.get("/")
async def root():
    return {"message": "EVDock Backend API"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
