# backend/lmsdb/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import ADMIN_SITE_ID, EXTERNAL_SITE_ID, stores

from .apps.sites.router import router as sites_router
from .apps.accounts.router_public import router as accounts_public_router
from .apps.accounts.router_admin import router as accounts_admin_router
from .apps.courses.router import router as courses_router
from .apps.dashboard.router import router as dashboard_router
from .apps.assessments.router import router as assessments_router
from .apps.certificates.router import router as certificates_router
from .apps.payments.router import router as payments_router
from .apps.recommendations.router import router as recommendations_router
from .apps.payments.gateway import build_payment_gateway
from .apps.recommendations.client import build_recommender

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://localhost:9002",
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The two reserved stores always exist; branch stores open lazily.
    stores.engine(ADMIN_SITE_ID)
    stores.engine(EXTERNAL_SITE_ID)
    app.state.payment_gateway = build_payment_gateway()
    if app.state.payment_gateway is None:
        logger.info("PAYMONGO_SECRET_KEY not set; gateway checkout disabled")
    app.state.recommender = build_recommender()
    if app.state.recommender is None:
        logger.info("AI_RECOMMENDER_URL not set; recommendations disabled")
    yield
    stores.dispose_all()


app = FastAPI(title="LMS API", version="1.0.0", lifespan=lifespan)
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "LMS backend is running"}

@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}

app.include_router(sites_router)
app.include_router(accounts_public_router)
app.include_router(accounts_admin_router)
app.include_router(courses_router)
app.include_router(dashboard_router)
app.include_router(assessments_router)
app.include_router(certificates_router)
app.include_router(payments_router)
app.include_router(recommendations_router)
