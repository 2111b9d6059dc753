"""msgspec request decoding and response encoding for the hot progress endpoints."""

from __future__ import annotations

from typing import Any, TypeVar

import msgspec
from fastapi import Request, status
from starlette.responses import Response

from coursegen.core.errors import ValidationError

T = TypeVar("T", bound=msgspec.Struct)


async def decode_msgspec_request(request: Request, struct_type: type[T]) -> T:
  """Decode and type-check a JSON body; malformed bodies become a domain ValidationError."""
  payload_bytes = await request.body()
  try:
    return msgspec.json.decode(payload_bytes, type=struct_type)
  except msgspec.ValidationError as exc:
    raise ValidationError(f"Invalid request payload: {exc}", code="invalid_payload") from exc
  except msgspec.DecodeError as exc:
    raise ValidationError("Request body is not valid JSON.", code="invalid_json") from exc


def encode_msgspec_response(payload: msgspec.Struct | list[Any], *, status_code: int = status.HTTP_200_OK) -> Response:
  encoded = msgspec.json.encode(payload)
  return Response(content=encoded, status_code=status_code, media_type="application/json")
