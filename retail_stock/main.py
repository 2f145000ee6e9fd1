import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from retail_stock.api import allocations, batches, documents, movements, products
from retail_stock.config import settings
from retail_stock.database import init_db
from retail_stock.errors import StockError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Batch registry, FEFO allocation, stock movements and order fulfillment",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StockError)
async def stock_error_handler(request: Request, exc: StockError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so clients can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(products.router, prefix="/api/v1")
app.include_router(batches.router, prefix="/api/v1")
app.include_router(movements.router, prefix="/api/v1")
app.include_router(allocations.router, prefix="/api/v1")
app.include_router(documents.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
