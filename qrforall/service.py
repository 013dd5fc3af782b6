"""QR code lifecycle: mint, read, update, pause, delete, export and resolve.

Ties the rendering pipeline, the token manager and the record store
together. Everything that mutates a record authenticates with the edit token
first; the public surfaces (export and scan resolution) need only the id or
slug.
"""

import threading
import uuid
from dataclasses import dataclass, replace
from urllib.parse import urlparse

from qrforall.compositor import LogoFetcher, fetch_logo
from qrforall.config import Settings
from qrforall.contrast import require_contrast
from qrforall.encoder import encode
from qrforall.errors import AuthError, NotFoundError, ValidationError
from qrforall.exporter import ExportedImage, ExportFormat
from qrforall.logging import audit, get_logger, trace
from qrforall.options import ErrorCorrection, QROptions, validate_content, validate_size
from qrforall.pipeline import generate
from qrforall.store import QRCodeStore, QRMode, QRRecord, utcnow
from qrforall.tokens import SLUG_LENGTH, Credentials, TokenManager

log = get_logger("service")

UPDATABLE_FIELDS = frozenset({"mode", "content", "options", "logoUrl", "active"})


@dataclass(frozen=True)
class CreatedQRCode:
    """Creation receipt. The only place the raw edit token ever appears."""

    id: str
    slug: str
    edit_token: str
    public_url: str
    management_url: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "editToken": self.edit_token,
            "publicUrl": self.public_url,
            "managementUrl": self.management_url,
            "expires": None,
        }

    def __repr__(self) -> str:
        return f"CreatedQRCode(id={self.id!r}, slug={self.slug!r}, edit_token='***')"


def _validate_logo_url(url: str | None) -> str | None:
    if url is None or url == "":
        return None
    if not isinstance(url, str):
        raise ValidationError("logoUrl must be a string")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"logoUrl must be an http(s) URL (got {url[:80]!r})")
    return url


def _validate_destination(mode: QRMode, content: str):
    """REDIRECT records send scanners to *content*, so it must be an http(s) URL."""
    if mode is QRMode.REDIRECT:
        parsed = urlparse(content)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("REDIRECT content must be an http(s) URL")


def _coerce_options(options: QROptions | dict | None) -> QROptions:
    if isinstance(options, QROptions):
        return options
    return QROptions.from_dict(options)


def check_style(options: QROptions, logo_url: str | None):
    """Reject styles that would not scan reliably.

    The dark color and, when a gradient is set, both gradient stops must reach
    the AA contrast ratio against the background. A logo requires error
    correction H.
    """
    if options.gradient is not None:
        require_contrast(options.gradient.start, options.background)
        require_contrast(options.gradient.end, options.background)
    else:
        require_contrast(options.color, options.background)
    if logo_url and options.error_correction is not ErrorCorrection.H:
        raise ValidationError("A logo requires errorCorrection H")


class QRCodeService:
    """Owns the business rules around minted QR codes.

    Args:
        store: Record persistence; its ``insert`` is the atomic slug claim.
        tokens: Slug and edit-token issuer.
        settings: Base URL, logo fetch limits and export defaults.
        fetcher: Logo download function (replaced in tests).
    """

    def __init__(
        self,
        store: QRCodeStore,
        tokens: TokenManager | None = None,
        settings: Settings | None = None,
        fetcher: LogoFetcher = fetch_logo,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.tokens = tokens or TokenManager(max_slug_attempts=self.settings.slug_max_attempts)
        self._fetcher = fetcher
        self._fetch_slots = threading.BoundedSemaphore(self.settings.logo_fetch_concurrency)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def scan_url(self, slug: str) -> str:
        return f"{self.settings.base_url}/r/{slug}"

    def public_url(self, record: QRRecord) -> str:
        if record.mode is QRMode.REDIRECT:
            return self.scan_url(record.slug)
        return f"{self.settings.base_url}/api/qrcodes/{record.id}/export?format=svg"

    def management_url(self, slug: str, token: str) -> str:
        return f"{self.settings.base_url}/manage/{slug}?token={token}"

    def _check_capacity(self, mode: QRMode, content: str, options: QROptions, slug: str | None = None):
        """Encode what the symbol will carry so oversize content fails before it is stored."""
        data = self.scan_url(slug or "0" * SLUG_LENGTH) if mode is QRMode.REDIRECT else content
        encode(data, options.error_correction)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @trace(redact=True)
    def create(
        self,
        mode: QRMode | str,
        content: str,
        options: QROptions | dict | None = None,
        logo_url: str | None = None,
    ) -> CreatedQRCode:
        """Validate, mint credentials and persist a new QR code.

        Raises:
            ValidationError / ContrastError: bad input or unscannable style.
            EncodingCapacityError: content does not fit at the chosen error correction.
            SlugAllocationError: slug retries exhausted.
        """
        mode = QRMode.parse(mode)
        validate_content(content)
        options = _coerce_options(options)
        _validate_destination(mode, content)
        logo_url = _validate_logo_url(logo_url)
        check_style(options, logo_url)
        self._check_capacity(mode, content, options)

        qr_id = uuid.uuid4().hex
        created: list[QRRecord] = []

        def claim(creds: Credentials) -> bool:
            record = QRRecord(
                id=qr_id,
                slug=creds.slug,
                mode=mode,
                content=content,
                options=options,
                edit_token_hash=creds.stored_hash,
                target_url=self.scan_url(creds.slug) if mode is QRMode.REDIRECT else None,
                logo_url=logo_url,
            )
            if self.store.insert(record):
                created.append(record)
                return True
            return False

        creds = self.tokens.issue(claim)
        record = created[0]
        audit("qr.created", logger=log, id=record.id, slug=record.slug, mode=mode.value,
              logo=logo_url is not None)
        return CreatedQRCode(
            id=record.id,
            slug=record.slug,
            edit_token=creds.edit_token,
            public_url=self.public_url(record),
            management_url=self.management_url(record.slug, creds.edit_token),
        )

    def _authorize(self, qr_id: str, token: str | None) -> QRRecord:
        if not token:
            audit("auth.denied", logger=log, id=qr_id, reason="missing")
            raise AuthError()
        record = self.store.get(qr_id)
        if record is None:
            raise NotFoundError()
        if not self.tokens.verify_edit_token(token, record.edit_token_hash):
            audit("auth.denied", logger=log, id=qr_id, reason="mismatch")
            raise AuthError()
        return record

    @trace(redact=True)
    def get(self, qr_id: str, token: str | None) -> QRRecord:
        return self._authorize(qr_id, token)

    @trace(redact=True)
    def update(self, qr_id: str, token: str | None, changes: dict) -> QRRecord:
        """Apply a partial update.

        ``changes`` uses the wire keys ``mode``, ``content``, ``options``
        (merged over the stored options), ``logoUrl`` and ``active``. The
        merged style is re-validated before anything is written.
        """
        record = self._authorize(qr_id, token)
        if not isinstance(changes, dict):
            raise ValidationError("update body must be an object")
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update field(s): {', '.join(sorted(unknown))}")

        mode = QRMode.parse(changes["mode"]) if "mode" in changes else record.mode
        content = validate_content(changes["content"]) if "content" in changes else record.content
        options = record.options
        if changes.get("options") is not None:
            if not isinstance(changes["options"], dict):
                raise ValidationError("options must be an object")
            options = QROptions.from_dict({**record.options.to_dict(), **changes["options"]})
        logo_url = _validate_logo_url(changes["logoUrl"]) if "logoUrl" in changes else record.logo_url
        active = record.active
        if "active" in changes:
            if not isinstance(changes["active"], bool):
                raise ValidationError("active must be a boolean")
            active = changes["active"]
        _validate_destination(mode, content)
        check_style(options, logo_url)
        self._check_capacity(mode, content, options, record.slug)

        updated = replace(
            record,
            mode=mode,
            content=content,
            options=options,
            logo_url=logo_url,
            active=active,
            target_url=self.scan_url(record.slug) if mode is QRMode.REDIRECT else None,
            updated_at=utcnow(),
        )
        self.store.save(updated)
        audit("qr.updated", logger=log, id=qr_id, fields=sorted(changes))
        return updated

    @trace(redact=True)
    def toggle_pause(self, qr_id: str, token: str | None) -> QRRecord:
        record = self._authorize(qr_id, token)
        updated = replace(record, active=not record.active, updated_at=utcnow())
        self.store.save(updated)
        audit("qr.paused" if not updated.active else "qr.resumed", logger=log, id=qr_id)
        return updated

    @trace(redact=True)
    def rotate_token(self, qr_id: str, token: str | None) -> str:
        """Replace the edit token. The old one stops working immediately."""
        record = self._authorize(qr_id, token)
        new_token, stored_hash = self.tokens.rotate()
        self.store.save(replace(record, edit_token_hash=stored_hash, updated_at=utcnow()))
        audit("qr.token_rotated", logger=log, id=qr_id)
        return new_token

    @trace(redact=True)
    def delete(self, qr_id: str, token: str | None):
        self._authorize(qr_id, token)
        self.store.delete(qr_id)
        audit("qr.deleted", logger=log, id=qr_id)

    # ------------------------------------------------------------------
    # Public surfaces
    # ------------------------------------------------------------------

    def _limited_fetch(self, url: str, **kwargs) -> bytes:
        with self._fetch_slots:
            return self._fetcher(url, **kwargs)

    @trace
    def export(
        self,
        qr_id: str,
        fmt: ExportFormat | str,
        size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ExportedImage:
        """Render a stored QR code. ``size`` defaults to the configured export size."""
        fmt = ExportFormat.parse(fmt)
        size = validate_size(self.settings.default_export_size if size is None else size)
        record = self.store.get(qr_id)
        if record is None:
            raise NotFoundError()
        return generate(
            record.encoded_data,
            record.options,
            fmt,
            size=size,
            logo_url=record.logo_url,
            fetcher=self._limited_fetch,
            timeout=self.settings.logo_fetch_timeout,
            max_bytes=self.settings.logo_max_bytes,
            cancel=cancel,
        )

    @trace
    def resolve(self, slug: str) -> QRRecord:
        """Look up the record behind a scanned slug, active or not."""
        record = self.store.get_by_slug(slug)
        if record is None:
            audit("scan.miss", logger=log, slug=slug)
            raise NotFoundError()
        audit("scan.resolved", logger=log, slug=slug, mode=record.mode.value, active=record.active)
        return record
