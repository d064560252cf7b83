from __future__ import annotations

import json
from typing import Any, Union

from pydantic import ValidationError

from ..errors import FrameDecodeError
from ..models.events import EVENT_MODELS, EVENT_TYPE_ALIASES, DomainEvent


def decode_frame(frame: Union[str, bytes, dict[str, Any]]) -> DomainEvent:
    envelope = _load(frame)
    raw_type = envelope.get("type")
    nested = envelope.get("data")
    if isinstance(nested, dict):
        if not raw_type:
            envelope = nested
            raw_type = envelope.get("type")
        elif "contactId" not in envelope and "contact_id" not in envelope:
            # {type, data: {...payload}}
            envelope = {**nested, "type": raw_type}
    if not isinstance(raw_type, str) or not raw_type.strip():
        raise FrameDecodeError("Evento sem tipo.", details={"keys": sorted(envelope.keys())[:10]})

    kind = EVENT_TYPE_ALIASES.get(raw_type.strip().lower())
    if kind is None:
        raise FrameDecodeError("Tipo de evento desconhecido.", details={"type": raw_type})

    try:
        return EVENT_MODELS[kind].model_validate(envelope)
    except ValidationError as e:
        raise FrameDecodeError(
            "Payload de evento inválido.",
            details={"type": kind, "errors": e.error_count()},
        )


def _load(frame: Union[str, bytes, dict[str, Any]]) -> dict[str, Any]:
    if isinstance(frame, dict):
        return frame
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameDecodeError("Frame com encoding inválido.", details={"error": str(e)})
    try:
        data = json.loads(frame)
    except (TypeError, ValueError) as e:
        raise FrameDecodeError("Frame não é JSON válido.", details={"error": str(e)})
    if not isinstance(data, dict):
        raise FrameDecodeError("Frame deve ser um objeto JSON.", details={"type": type(data).__name__})
    return data
