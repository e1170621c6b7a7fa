"""
Cookie-backed anonymous client identity.

Provides:
- Random URL-safe identifiers of a configurable byte length
- Sliding expiration (the cookie is re-issued on every response)
- Optional HMAC-SHA256 signing through a companion ``<name>.sig`` cookie
"""
import hashlib
import hmac
import re
import secrets
from base64 import urlsafe_b64encode
from typing import Optional
import structlog
from starlette.requests import Request
from starlette.responses import Response

log = structlog.get_logger()

DEFAULT_COOKIE_NAME = "acid"
DEFAULT_BYTE_LENGTH = 16
DEFAULT_MAX_AGE = 365 * 24 * 60 * 60  # seconds

_IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class IdentityStore:
    """
    Reads and writes the identity cookie on a request/response pair.
    """

    def __init__(
        self,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        byte_length: int = DEFAULT_BYTE_LENGTH,
        max_age: int = DEFAULT_MAX_AGE,
        secret: Optional[str] = None,
        secure: bool = False,
    ):
        """
        Initialize IdentityStore.

        Args:
            cookie_name: Name of the identity cookie
            byte_length: Random bytes per identifier
            max_age: Cookie lifetime in seconds, refreshed on every write
            secret: Signing key; when unset cookies are not signed
            secure: Whether to flag the cookie as Secure
        """
        if byte_length < 1:
            raise ValueError("byte_length must be positive")
        self.cookie_name = cookie_name
        self.byte_length = byte_length
        self.max_age = max_age
        self.secure = secure
        self._secret = secret.encode("utf-8") if secret else None

    @property
    def signature_cookie_name(self) -> str:
        return f"{self.cookie_name}.sig"

    def generate(self) -> str:
        """Create a fresh identifier."""
        return secrets.token_urlsafe(self.byte_length)

    def sign(self, value: str) -> str:
        """Signature over ``name=value`` with the configured secret."""
        if self._secret is None:
            raise ValueError("No signing secret configured")
        message = f"{self.cookie_name}={value}".encode("utf-8")
        digest = hmac.new(self._secret, message, hashlib.sha256).digest()
        return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def read(self, request: Request) -> Optional[str]:
        """
        Return the identity presented by the client, if valid.

        A missing, malformed or wrongly signed cookie reads as None.
        """
        value = request.cookies.get(self.cookie_name)
        if not value or not _IDENTITY_PATTERN.match(value):
            return None

        if self._secret is not None:
            signature = request.cookies.get(self.signature_cookie_name, "")
            if not hmac.compare_digest(signature, self.sign(value)):
                log.info("identity.signature_mismatch", cookie=self.cookie_name)
                return None

        return value

    def write(self, response: Response, identity: str) -> None:
        """Persist ``identity`` on the response with a refreshed expiry."""
        cookies = [(self.cookie_name, identity)]
        if self._secret is not None:
            cookies.append((self.signature_cookie_name, self.sign(identity)))
        for name, value in cookies:
            response.set_cookie(
                name,
                value,
                max_age=self.max_age,
                expires=self.max_age,
                path="/",
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )

    def resolve(self, request: Request) -> str:
        """Existing identity from the request, or a newly generated one."""
        identity = self.read(request)
        if identity is None:
            identity = self.generate()
            log.debug("identity.issued", cookie=self.cookie_name)
        return identity
