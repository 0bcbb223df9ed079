from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

from vstream.utils.logging import get_logger

logger = get_logger("envelope")

VALUE_FIELD = "value"
CREATED_AT_FIELD = "createdAtDateTimeOffset"
CONTEXT_FIELD = "ctx"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Envelope(BaseModel):
    """
    A message as it travels through a stream.

    The payload is opaque to the transport. `metadata` carries side-band
    values such as the trace propagation token; only `ctx` is persisted.
    """
    payload: str
    created_at: Optional[datetime] = Field(default_factory=_utcnow)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def telemetry_context(self) -> Optional[str]:
        return self.metadata.get(CONTEXT_FIELD)

    def to_fields(self) -> Dict[str, str]:
        """Flatten into the field set written to the log."""
        fields = {VALUE_FIELD: self.payload}
        if self.created_at is not None:
            fields[CREATED_AT_FIELD] = self.created_at.isoformat()
        if self.telemetry_context:
            fields[CONTEXT_FIELD] = self.telemetry_context
        return fields

    @classmethod
    def from_fields(cls, fields: Mapping[str, str]) -> Optional["Envelope"]:
        """
        Rebuild an envelope from a raw entry.
        Returns None when the payload field is missing or empty.
        Unknown fields are ignored.
        """
        payload = fields.get(VALUE_FIELD)
        if not payload:
            return None

        metadata: Dict[str, str] = {}
        if fields.get(CONTEXT_FIELD):
            metadata[CONTEXT_FIELD] = fields[CONTEXT_FIELD]

        return cls(
            payload=payload,
            created_at=_parse_created_at(fields.get(CREATED_AT_FIELD)),
            metadata=metadata,
        )


def _parse_created_at(raw: Optional[str]) -> Optional[datetime]:
    # Producers outside this package may write any timestamp format
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.debug(f"Unparseable {CREATED_AT_FIELD} value: {raw!r}")
        return None
