"""QR code record store: JSON-file-backed, slug-indexed, thread-safe."""

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from qrforall.errors import NotFoundError, ValidationError
from qrforall.logging import audit, get_logger, trace
from qrforall.options import QROptions

log = get_logger("store")


class QRMode(Enum):
    EMBED = "EMBED"        # the symbol carries the content itself
    REDIRECT = "REDIRECT"  # the symbol carries BASE_URL/r/<slug>

    @classmethod
    def parse(cls, value: "str | QRMode") -> "QRMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        raise ValidationError(f"mode must be EMBED or REDIRECT (got {value!r})")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class QRRecord:
    """One minted QR code. ``edit_token_hash`` is the only trace of its owner."""

    id: str
    slug: str
    mode: QRMode
    content: str
    options: QROptions
    edit_token_hash: str = field(repr=False)
    target_url: str | None = None
    logo_url: str | None = None
    active: bool = True
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    @property
    def encoded_data(self) -> str:
        """What the symbol itself carries."""
        if self.mode is QRMode.REDIRECT and self.target_url:
            return self.target_url
        return self.content

    def to_dict(self) -> dict:
        """Public form for API responses. The token hash is never included."""
        return {
            "id": self.id,
            "slug": self.slug,
            "mode": self.mode.value,
            "content": self.content,
            "targetUrl": self.target_url,
            "options": self.options.to_dict(),
            "logoUrl": self.logo_url,
            "active": self.active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_storage(self) -> dict:
        data = self.to_dict()
        data["editTokenHash"] = self.edit_token_hash
        return data

    @classmethod
    def from_storage(cls, data: dict) -> "QRRecord":
        return cls(
            id=data["id"],
            slug=data["slug"],
            mode=QRMode(data["mode"]),
            content=data["content"],
            target_url=data.get("targetUrl"),
            options=QROptions.from_dict(data.get("options")),
            logo_url=data.get("logoUrl"),
            edit_token_hash=data["editTokenHash"],
            active=data.get("active", True),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )


class QRCodeStore:
    """JSON-file-backed record store.

    Thread-safe. With ``db_path=None`` records live in memory only.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = Path(db_path) if db_path else None
        self._lock = threading.Lock()
        self._data = {"records": {}, "slugs": {}}
        if self.db_path is not None and self.db_path.exists():
            with open(self.db_path) as f:
                self._data = json.load(f)
            log.info("Loaded store from %s (%d records)", self.db_path, len(self._data["records"]))

    def _save(self):
        if self.db_path is None:
            return
        tmp = self.db_path.with_suffix(self.db_path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp, self.db_path)

    @trace
    def insert(self, record: QRRecord) -> bool:
        """Persist a new record unless its slug (or id) is already taken.

        Check and write happen under one lock, so this doubles as the atomic
        slug claim. Returns False on collision.
        """
        with self._lock:
            if record.slug in self._data["slugs"] or record.id in self._data["records"]:
                audit("record.slug_collision", logger=log, slug=record.slug)
                return False
            self._data["records"][record.id] = record.to_storage()
            self._data["slugs"][record.slug] = record.id
            self._save()
        audit("record.created", logger=log, id=record.id, slug=record.slug, mode=record.mode.value)
        return True

    def get(self, qr_id: str) -> QRRecord | None:
        with self._lock:
            data = self._data["records"].get(qr_id)
        return QRRecord.from_storage(data) if data is not None else None

    def get_by_slug(self, slug: str) -> QRRecord | None:
        with self._lock:
            qr_id = self._data["slugs"].get(slug)
            data = self._data["records"].get(qr_id) if qr_id is not None else None
        return QRRecord.from_storage(data) if data is not None else None

    @trace
    def save(self, record: QRRecord):
        """Overwrite an existing record. Slugs are immutable."""
        with self._lock:
            existing = self._data["records"].get(record.id)
            if existing is None:
                raise NotFoundError()
            if existing["slug"] != record.slug:
                raise ValueError("a record's slug cannot change")
            self._data["records"][record.id] = record.to_storage()
            self._save()
        audit("record.updated", logger=log, id=record.id, active=record.active)

    @trace
    def delete(self, qr_id: str) -> bool:
        with self._lock:
            data = self._data["records"].pop(qr_id, None)
            if data is None:
                return False
            self._data["slugs"].pop(data["slug"], None)
            self._save()
        audit("record.deleted", logger=log, id=qr_id)
        return True

    def slug_taken(self, slug: str) -> bool:
        with self._lock:
            return slug in self._data["slugs"]

    def stats(self) -> dict:
        with self._lock:
            records = self._data["records"].values()
            return {
                "total_records": len(self._data["records"]),
                "active_records": sum(1 for r in records if r.get("active", True)),
            }
