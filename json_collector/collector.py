"""
JSON event collector.

Accepts small JSON (or text-encoded JSON) submissions, tags each with an
anonymous client identity, the client address and the receive time, and
pushes the resulting EventRecord into an output channel.

Request flow:
    method/CORS check -> content-type check -> bounded body read
    -> JSON object validation -> record assembly -> push -> response

No response ever carries a body; the status code and headers are the
whole contract.
"""
from datetime import datetime, timezone
from typing import Dict, Optional
import json
import orjson
import structlog
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send
from .address import AddressResolver, TrustPredicate, compile_trust
from .adapters.base import RecordSink
from .body import BodyReader, declared_length, has_body, is_json_type, is_text_type, parse_byte_size, parse_media_type
from .channel import DEFAULT_BUFFER, OutputChannel, Pipe, Subscription
from .config import Settings
from .errors import BodyReadError, CollectorError, JSONSyntaxError, ProtocolError, ShapeError, UnsupportedMediaError
from .event_models import EventRecord
from .identity import DEFAULT_BYTE_LENGTH, DEFAULT_COOKIE_NAME, DEFAULT_MAX_AGE, IdentityStore
from .metrics import Metrics

log = structlog.get_logger()

ALLOW = "POST, OPTIONS"
PREFLIGHT_MAX_AGE = "1728000"
DEFAULT_LIMIT = "10kb"


def parse_json_object(text: str) -> dict:
    """
    Parse text that must hold exactly one JSON object.

    Raises:
        ShapeError: If the trimmed text is not wrapped in braces
        JSONSyntaxError: If the object-shaped text is not valid JSON
    """
    stripped = text.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        raise ShapeError("Body is not a JSON object")
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        # orjson refuses lone surrogate escapes, which are still valid JSON
        try:
            data = json.loads(text, parse_constant=_reject_constant)
        except ValueError as e:
            raise JSONSyntaxError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ShapeError("Body is not a JSON object")
    return data


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def flatten_headers(request: Request) -> Dict[str, str]:
    """Lowercase header names; repeated headers joined with ', '."""
    headers: Dict[str, str] = {}
    for name, value in request.headers.items():
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return headers


class Collector:
    """
    ASGI application accepting event submissions on any path it is mounted on.

    The collector owns its output channel; consumers attach through
    subscribe() or pipe().
    """

    def __init__(
        self,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        byte_length: int = DEFAULT_BYTE_LENGTH,
        max_age: int = DEFAULT_MAX_AGE,
        trust: str | int | TrustPredicate | None = None,
        limit: str | int = DEFAULT_LIMIT,
        identity_secret: Optional[str] = None,
        secure_cookie: bool = False,
        channel_buffer: int = DEFAULT_BUFFER,
        identity_store: Optional[IdentityStore] = None,
        address_resolver: Optional[AddressResolver] = None,
        body_reader: Optional[BodyReader] = None,
        metrics: Optional[Metrics] = None,
    ):
        """
        Initialize collector.

        Args:
            cookie_name: Identity cookie name
            byte_length: Random bytes per identity
            max_age: Identity cookie lifetime in seconds
            trust: Proxy trust policy, see address.compile_trust (default: trust none)
            limit: Body byte limit, int or size string like "10kb"
            identity_secret: Key for signing the identity cookie
            secure_cookie: Flag the identity cookie as Secure
            channel_buffer: Per-subscriber buffer of the output channel
            identity_store: Replaces the cookie-backed store built from the above
            address_resolver: Replaces the X-Forwarded-For resolver
            body_reader: Replaces the streaming body reader
            metrics: Prometheus metrics to record outcomes on
        """
        self.identity_store = identity_store or IdentityStore(
            cookie_name=cookie_name,
            byte_length=byte_length,
            max_age=max_age,
            secret=identity_secret,
            secure=secure_cookie,
        )
        self.address_resolver = address_resolver or AddressResolver()
        self.body_reader = body_reader or BodyReader()
        self.trust = compile_trust(trust)
        self.limit = parse_byte_size(limit)
        self.metrics = metrics
        self.channel = OutputChannel(
            max_buffer=channel_buffer,
            on_drop=metrics.record_channel_drop if metrics else None,
        )

    @classmethod
    def from_settings(cls, settings: Settings, metrics: Optional[Metrics] = None) -> "Collector":
        return cls(
            cookie_name=settings.COOKIE_NAME,
            byte_length=settings.IDENTITY_BYTE_LENGTH,
            max_age=settings.IDENTITY_MAX_AGE,
            trust=settings.TRUST_PROXY,
            limit=settings.BODY_LIMIT,
            identity_secret=settings.IDENTITY_SECRET,
            secure_cookie=settings.COOKIE_SECURE,
            channel_buffer=settings.CHANNEL_BUFFER,
            metrics=metrics,
        )

    def subscribe(self, max_buffer: Optional[int] = None) -> Subscription:
        """Attach an independent consumer to the output channel."""
        return self.channel.subscribe(max_buffer)

    def pipe(self, sink: RecordSink, max_buffer: Optional[int] = None) -> Pipe:
        """Forward every subsequent record into ``sink``."""
        return self.channel.pipe(sink, max_buffer)

    async def close(self):
        """Tear down the output channel."""
        await self.channel.close()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            raise RuntimeError(f"Collector only serves http scopes, got {scope['type']!r}")
        request = Request(scope, receive)
        response = await self.handle(request)
        await response(scope, receive, send)

    async def handle(self, request: Request) -> Response:
        """Run one submission through the collector and build the response."""
        received_at = datetime.now(timezone.utc)
        # Every response re-issues the identity, preflights and 405s included
        identity = self.identity_store.resolve(request)
        with structlog.contextvars.bound_contextvars(identity=identity):
            return await self._process(request, identity, received_at)

    async def _process(self, request: Request, identity: str, received_at: datetime) -> Response:
        headers: Dict[str, str] = {}
        if request.headers.get("origin"):
            headers["Access-Control-Allow-Origin"] = "*"

        try:
            if self._negotiate(request, headers):
                return self._respond(204, headers, identity)
        except ProtocolError as e:
            log.info("collector.method_rejected", method=request.method, reason=str(e))
            return self._respond(self._reject("protocol", e.status_code), headers, identity)

        record = EventRecord(
            headers=flatten_headers(request),
            identity=identity,
            client_address=self.address_resolver.resolve(request, self.trust),
            received_at=received_at,
        )

        try:
            record.data = await self._ingest(request)
        except (UnsupportedMediaError, BodyReadError) as e:
            self._emit(record)
            status = self._reject(getattr(e, "type", "media_type"), e.status_code)
            return self._respond(status, headers, identity)
        except CollectorError as e:
            log.info("collector.payload_rejected", status=e.status_code, reason=str(e))
            status = self._reject("shape" if isinstance(e, ShapeError) else "syntax", e.status_code)
            return self._respond(status, headers, identity)

        # Consumers see the record before the client sees the 200
        self._emit(record)
        return self._respond(200, headers, identity)

    def _negotiate(self, request: Request, headers: Dict[str, str]) -> bool:
        """
        Apply method and CORS preflight rules.

        Returns:
            True when a preflight was answered and the response is 204

        Raises:
            ProtocolError: For disallowed methods and mismatched preflights
        """
        method = request.method
        if method == "POST":
            return False

        if method == "OPTIONS":
            if request.headers.get("origin"):
                requested = request.headers.get("access-control-request-method")
                if not requested or requested.strip() != "POST":
                    raise ProtocolError(f"Preflight requested {requested!r}")
                headers["Access-Control-Allow-Methods"] = "POST"
                headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            headers["Allow"] = ALLOW
            return True

        headers["Allow"] = ALLOW
        raise ProtocolError(f"Method {method} not allowed")

    def _respond(self, status: int, headers: Dict[str, str], identity: Optional[str] = None) -> Response:
        response = Response(status_code=status, headers=headers)
        if identity is not None:
            self.identity_store.write(response, identity)
        return response

    async def _ingest(self, request: Request) -> dict:
        """Content-type gate, bounded read and object validation."""
        # Text is accepted so browsers can post without a CORS preflight
        media_type, params = parse_media_type(request.headers.get("content-type"))
        if not has_body(request) or not (is_json_type(media_type) or is_text_type(media_type)):
            log.info("collector.unsupported_media", content_type=request.headers.get("content-type"))
            raise UnsupportedMediaError(f"Unsupported media type {media_type!r}")

        length = declared_length(request)
        try:
            text = await self.body_reader.read(
                request,
                limit=self.limit,
                length=length,
                encoding=params.get("charset"),
            )
        except BodyReadError as e:
            log.warning(
                "collector.body_read_failed",
                type=e.type,
                status=e.status_code,
                error=str(e),
                **e.details,
            )
            raise
        except Exception as e:
            # Host-supplied readers may fail in their own terms
            status = getattr(e, "status", None) or getattr(e, "status_code", None)
            if not isinstance(status, int):
                status = None
            failure_type = getattr(e, "type", "request.failed")
            log.warning(
                "collector.body_read_failed",
                type=failure_type,
                status=status or BodyReadError.status_code,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BodyReadError(str(e), type=failure_type, status_code=status) from e

        data = parse_json_object(text)
        if self.metrics and length is not None:
            self.metrics.record_body_size(length)
        return data

    def _emit(self, record: EventRecord):
        self.channel.push(record)
        if self.metrics:
            self.metrics.record_emitted(record.accepted)
        log.debug("collector.record_emitted", accepted=record.accepted)

    def _reject(self, reason: str, status: int) -> int:
        if self.metrics:
            self.metrics.record_rejection(reason, status)
        return status
