"""Meta endpoints: health and version."""

from __future__ import annotations

from fastapi import APIRouter

from sidring.codec import SID_PREFIX

router = APIRouter(prefix="/api/v1", tags=["meta"])


@router.get("/health")
def health():
    return {"status": "ok", "service": "sidring"}


@router.get("/version")
def version():
    return {
        "gateway": "0.1.0",
        "sid_prefix": SID_PREFIX,
    }
