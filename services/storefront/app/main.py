from fastapi import FastAPI, Request
from app.version import VERSION
from app.api import admin, checkout, orders, webhooks
from app.core.logging import bind_request_context, clear_request_context, configure_logging
from app.db.session import Database
from app.kafka import producer
from prometheus_fastapi_instrumentator import Instrumentator
import structlog

logger = structlog.get_logger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Storefront Order Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/order/metrics",
    should_gzip=True,
)

@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_request_context()
    bind_request_context(method=request.method, path=request.url.path)
    return await call_next(request)

# Health endpoints
@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/order/health")
def order_health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    configure_logging()
    # Tests install their own database before startup runs
    if getattr(app.state, "db", None) is None:
        app.state.db = Database().open()
    logger.info("Storefront service started", version=VERSION)

@app.on_event("shutdown")
async def shutdown_event():
    producer.close()
    db = getattr(app.state, "db", None)
    if db is not None:
        db.close()
        app.state.db = None

# Include routers
app.include_router(checkout.router, prefix="/order", tags=["checkout"])
app.include_router(orders.router, prefix="/order", tags=["orders"])
app.include_router(webhooks.router, prefix="/order", tags=["webhooks"])
app.include_router(admin.router, prefix="/order", tags=["admin"])
