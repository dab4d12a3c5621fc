import logging
import math
import os
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from gymaccess import app_context
from gymaccess.app.billing import SubscriberIdentity
from gymaccess.app.config import get_membership_config
from gymaccess.app.routes.billing import router as billing_router
from gymaccess.app.routes.passes import router as passes_router
from gymaccess.app.tasks import get_task_runner

load_dotenv()

logger = logging.getLogger("gymaccess")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "gymaccess"),
    user=os.getenv("DB_USER", "gym_user"),
    password=os.getenv("DB_PASSWORD", "gym_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


def get_conn():
    return psycopg2.connect(**DB_CFG)


def subscriber_from_headers(
    *,
    subscriber_id: Optional[str],
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> SubscriberIdentity:
    """Build the caller identity forwarded by the authenticating proxy."""

    if subscriber_id is None or not subscriber_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return SubscriberIdentity(
        subscriber_id=subscriber_id.strip(),
        email=(email or "").strip() or None,
        display_name=(display_name or "").strip() or None,
    )


app = FastAPI(title="Gym Access API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app_context.configure(
    get_conn=get_conn,
    get_current_subscriber=subscriber_from_headers,
)

app.include_router(billing_router)
app.include_router(passes_router)


@app.on_event("startup")
def validate_configuration() -> None:
    problems = get_membership_config().validate()
    for problem in problems:
        logger.error("Configuration problem: %s", problem)
    if not problems:
        logger.info("Configuration validated")


@app.get("/api/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/metrics/deferred-tasks")
def read_deferred_task_metrics() -> Dict[str, Any]:
    return get_task_runner().metrics()
