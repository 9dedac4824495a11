import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.api import inventory, orders, products
from storefront.config import settings
from storefront.database import SessionLocal, init_db
from storefront.events import OrderCreated
from storefront.services.invoice_service import InvoiceGenerator
from storefront.services.notification_service import build_dispatcher
from storefront.services.webhook_service import WebhookNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    dispatcher = build_dispatcher(settings.NOTIFICATION_WORKERS)
    dispatcher.subscribe(OrderCreated, InvoiceGenerator(SessionLocal))
    webhooks = WebhookNotifier()
    if webhooks.urls:
        dispatcher.subscribe_all(webhooks)
    app.state.dispatcher = dispatcher
    logger.info("%s started", settings.APP_NAME)
    yield
    dispatcher.shutdown()


app = FastAPI(
    title="Storefront API",
    description="Catalog stock ledger, order placement and order lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(products.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
