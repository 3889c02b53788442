"""Health check endpoint.

Returns 200 when the database answers and 503 when it does not.  External
collaborators (Graph, Halaxy, Key Vault, Resend) are not probed: their
outages degrade or fail individual onboarding runs, not the service.
"""

import logging
from typing import Any

from fastapi import APIRouter
from starlette.responses import JSONResponse

from app.db.supabase import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> Any:
    db_status = "disconnected"

    try:
        client = get_supabase()
        result = client.table("practitioners").select("id").limit(1).execute()
        if result is not None:
            db_status = "connected"
    except Exception:
        logger.warning("Health check: Supabase connection failed", exc_info=True)

    payload: dict[str, str] = {
        "status": "ok" if db_status == "connected" else "degraded",
        "database": db_status,
    }

    if db_status != "connected":
        return JSONResponse(status_code=503, content=payload)

    return payload
