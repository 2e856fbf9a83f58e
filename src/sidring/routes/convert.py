"""Conversion endpoints, object ID to SID and back.

Single conversions raise FormatError (400 via the app handler).
Batch conversions report failures per value and never abort.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sidring.codec import FormatError, decode_uuid, encode, is_cloud_sid
from sidring.config import SidringConfig
from sidring.deps import get_config

router = APIRouter(prefix="/api/v1", tags=["convert"])


class ConvertRequest(BaseModel):
    values: list[str]


class ConvertResult(BaseModel):
    input: str
    direction: Literal["encode", "decode"]
    output: str | None = None
    error: str | None = None


def convert_one(value: str) -> ConvertResult:
    direction = "decode" if is_cloud_sid(value) else "encode"
    try:
        if direction == "decode":
            output = str(decode_uuid(value))
        else:
            output = encode(value)
    except FormatError as exc:
        return ConvertResult(input=value, direction=direction, error=exc.reason)
    return ConvertResult(input=value, direction=direction, output=output)


@router.get("/sids/{object_id}")
def object_id_to_sid(object_id: str):
    return {"object_id": object_id, "sid": encode(object_id)}


@router.get("/object-ids/{sid}")
def sid_to_object_id(sid: str):
    return {"sid": sid, "object_id": str(decode_uuid(sid))}


@router.post("/convert")
def convert_batch(
    request: ConvertRequest,
    config: SidringConfig = Depends(get_config),
):
    if len(request.values) > config.max_batch:
        raise HTTPException(
            status_code=413,
            detail=f"At most {config.max_batch} values per request",
        )
    results = [convert_one(value) for value in request.values]
    return {
        "results": [r.model_dump() for r in results],
        "errors": sum(1 for r in results if r.error is not None),
    }
