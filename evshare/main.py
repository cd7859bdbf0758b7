from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from evshare.core.logging import setup_logging
from evshare.exceptions import (
    concurrency_exception_handler,
    domain_exception_handler,
)
from evshare.middleware.rate_limit import custom_rate_limit_exceeded, limiter
from evshare.routers import auth, funds, health, metrics, upgrades
from evshare.services.exceptions import ConcurrentModificationError, UpgradeDomainError

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("EV share API starting")
    yield
    logger.info("EV share API shutting down")


app = FastAPI(title="EV Co-ownership Upgrade API", lifespan=lifespan)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)
app.add_middleware(SlowAPIMiddleware)

# Register exception handlers
app.add_exception_handler(UpgradeDomainError, domain_exception_handler)
app.add_exception_handler(ConcurrentModificationError, concurrency_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],   # Allows POST, GET, OPTIONS, etc
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(upgrades.router)
app.include_router(funds.router)
app.include_router(metrics.router)


@app.get("/", tags=["root"])
def hello():
    return {"message": "EV co-ownership upgrade voting service"}
