"""
Pagination Cursor Codec

Opaque, versioned cursor tokens for seek pagination over
(sort timestamp, tiebreak id). The token is URL-safe base64 of

    {"v": 1, "s": "<ISO-8601 timestamp>", "i": "<row id>", "c": "<checksum>"}

Decoding never raises: anything malformed yields None and the caller
starts from the first page.
"""

import base64
import binascii
import hashlib
import json
import logging
import re
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CURSOR_VERSION = 1
MAX_CURSOR_LENGTH = 512
MAX_TIEBREAK_LENGTH = 128

_UUID_SHAPED = re.compile(r"^[0-9a-zA-Z]{8}-[0-9a-zA-Z]{4}-[0-9a-zA-Z]{4}-[0-9a-zA-Z]{4}-[0-9a-zA-Z]{12}$")


def _checksum(version: int, sort_value: str, tiebreak_id: str) -> str:
    digest = hashlib.sha256(f"{version}|{sort_value}|{tiebreak_id}".encode("utf-8"))
    return digest.hexdigest()[:16]


class PaginationCursor(BaseModel):
    """Position of the last row seen, as (sort_value, tiebreak_id)."""

    sort_value: datetime
    tiebreak_id: str

    @classmethod
    def for_item(cls, item: Any) -> "PaginationCursor":
        """Build a cursor from a row exposing `updated_at` and `id`."""
        return cls(sort_value=item.updated_at, tiebreak_id=str(item.id))

    def encode(self) -> str:
        """Encode cursor to URL-safe string."""
        sort_value = self.sort_value.isoformat()
        data = {
            "v": CURSOR_VERSION,
            "s": sort_value,
            "i": self.tiebreak_id,
            "c": _checksum(CURSOR_VERSION, sort_value, self.tiebreak_id),
        }
        token = base64.urlsafe_b64encode(
            json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
        ).decode("ascii")
        if len(token) > MAX_CURSOR_LENGTH:
            raise ValueError(f"Cursor exceeds {MAX_CURSOR_LENGTH} characters")
        return token

    @classmethod
    def decode(cls, cursor: Optional[str]) -> Optional["PaginationCursor"]:
        """Decode cursor from URL-safe string; None when invalid."""
        if not cursor:
            return None

        if len(cursor) > MAX_CURSOR_LENGTH:
            return cls._reject("oversized", length=len(cursor))

        try:
            raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError):
            return cls._reject("undecodable")

        if not isinstance(data, dict):
            return cls._reject("not an object")

        version = data.get("v")
        sort_value = data.get("s")
        tiebreak_id = data.get("i")
        checksum = data.get("c")

        if version != CURSOR_VERSION:
            return cls._reject("unsupported version", version=version)
        if not isinstance(sort_value, str) or not isinstance(tiebreak_id, str):
            return cls._reject("missing fields")
        if not tiebreak_id or len(tiebreak_id) > MAX_TIEBREAK_LENGTH:
            return cls._reject("bad tiebreak id")
        if checksum != _checksum(version, sort_value, tiebreak_id):
            return cls._reject("checksum mismatch")

        try:
            parsed = datetime.fromisoformat(sort_value)
        except ValueError:
            return cls._reject("bad sort value")

        if _UUID_SHAPED.match(tiebreak_id):
            try:
                UUID(tiebreak_id)
            except ValueError:
                return cls._reject("malformed id")

        return cls(sort_value=parsed, tiebreak_id=tiebreak_id)

    @staticmethod
    def _reject(reason: str, **details: Any) -> None:
        logger.warning(
            f"Ignoring invalid pagination cursor ({reason}); starting from first page",
            extra={"cursor_rejection": reason, **details},
        )
        return None
