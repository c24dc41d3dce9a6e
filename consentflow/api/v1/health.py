from fastapi import APIRouter, Request

from consentflow.core.config import get_settings

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    rid = getattr(request.state, "request_id", None)
    return {"status": "ok", "environment": get_settings().environment, "request_id": rid}
