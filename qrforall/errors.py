"""Error taxonomy shared by the rendering pipeline, the token subsystem and the HTTP surface.

Every error carries a machine-readable ``code`` and the HTTP ``status`` the
surface answers with, so callers can map failures without string matching.
"""


class QRForAllError(Exception):
    """Base class for all qrforall errors."""

    code = "QRFORALL_ERROR"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(QRForAllError):
    """Malformed options, content, format or size."""

    code = "VALIDATION_ERROR"
    status = 400


class ContrastError(ValidationError):
    """Foreground/background contrast below the WCAG AA threshold."""

    code = "CONTRAST_TOO_LOW"
    status = 400

    def __init__(self, ratio: float, minimum: float = 4.5):
        super().__init__(
            f"Color contrast too low ({ratio:.2f}:1). "
            f"Minimum {minimum}:1 required for scanability."
        )
        self.ratio = ratio
        self.minimum = minimum


class EncodingCapacityError(QRForAllError):
    """Content does not fit in any QR version at the requested error-correction level."""

    code = "CAPACITY_EXCEEDED"
    status = 413

    def __init__(self, length: int, error_correction: str):
        super().__init__(
            f"Content too large ({length} chars) for error correction level "
            f"{error_correction}; use a lower level or shorter content."
        )
        self.length = length
        self.error_correction = error_correction


class LogoFetchError(QRForAllError):
    """The logo could not be fetched or decoded."""

    code = "LOGO_FETCH_FAILED"
    status = 502

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch logo: {reason}")
        self.url = url
        self.reason = reason


class AuthError(QRForAllError):
    """Missing or invalid edit token. The message never says which."""

    code = "INVALID_TOKEN"
    status = 401
    MESSAGE = "Invalid or missing edit token"

    def __init__(self):
        super().__init__(self.MESSAGE)


class SlugAllocationError(QRForAllError):
    """Slug collision retries exhausted."""

    code = "SLUG_ALLOCATION_FAILED"
    status = 503

    def __init__(self, attempts: int):
        super().__init__(f"Could not allocate a unique slug after {attempts} attempts")
        self.attempts = attempts


class NotFoundError(QRForAllError):
    code = "NOT_FOUND"
    status = 404

    def __init__(self, what: str = "QR code"):
        super().__init__(f"{what} not found")
