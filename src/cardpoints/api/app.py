from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from cardpoints.api.dependencies import get_usage_ledger
from cardpoints.api.routes.health import router as health_router
from cardpoints.api.routes.rewards import router as rewards_router
from cardpoints.api.routes.rules import router as rules_router
from cardpoints.config import settings
from cardpoints.logging_config import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    ledger = get_usage_ledger()
    await ledger.create_schema()
    yield
    await ledger.dispose()


app = FastAPI(title="cardpoints API", version="0.1.0", lifespan=lifespan)
app.include_router(health_router)
app.include_router(rewards_router)
app.include_router(rules_router)


def run() -> None:
    configure_logging(settings.log_level)
    uvicorn.run("cardpoints.api.app:app", host=settings.app_host, port=settings.app_port, reload=False)
