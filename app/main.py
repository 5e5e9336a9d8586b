import logging

from fastapi import FastAPI
from contextlib import asynccontextmanager
from app.config import Config
from app.database import engine
from app import models


logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Parking Reconciliation Service",
    description="Reacts to transaction and payment writes: fees, paid balance, status and owner notifications",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "parking-reconciliation"}


from app.routers import triggers, transactions, webhooks, jobs  # noqa: E402
app.include_router(triggers.router, prefix="/api/v1/triggers", tags=["triggers"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["transactions"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["jobs"])
