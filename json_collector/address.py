"""
Originating client address resolution.

The address list is the socket peer followed by the ``X-Forwarded-For``
entries read right to left. Walking outward from the socket peer, each hop
is kept while the trust predicate accepts it; the last kept hop is the
client address.

A trust predicate is ``trust(address, hop) -> bool`` where ``hop`` is the
zero-based position in that list.
"""
import ipaddress
from typing import Callable, Iterable, List
import structlog
from starlette.requests import Request

log = structlog.get_logger()

TrustPredicate = Callable[[str, int], bool]

# Named ranges accepted by trust_networks
NETWORK_ALIASES = {
    "loopback": ["127.0.0.1/8", "::1/128"],
    "linklocal": ["169.254.0.0/16", "fe80::/10"],
    "uniquelocal": ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7"],
}


def trust_none(address: str, hop: int) -> bool:
    """Never trust a proxy; the socket peer is the client."""
    return False


def trust_all(address: str, hop: int) -> bool:
    """
    Trust every hop; the leftmost forwarded address wins.

    Unsafe in production: any client can spoof X-Forwarded-For.
    """
    return True


def trust_hops(count: int) -> TrustPredicate:
    """Trust the first ``count`` hops counted from the socket peer."""

    def predicate(address: str, hop: int) -> bool:
        return hop < count

    return predicate


def trust_networks(networks: Iterable[str]) -> TrustPredicate:
    """
    Trust hops whose address falls inside one of ``networks``.

    Args:
        networks: IP addresses, CIDR blocks, or the aliases
            "loopback", "linklocal" and "uniquelocal"

    Raises:
        ValueError: If an entry is not a valid address or network
    """
    parsed = []
    for entry in networks:
        entry = entry.strip()
        if not entry:
            continue
        for value in NETWORK_ALIASES.get(entry.lower(), [entry]):
            parsed.append(ipaddress.ip_network(value, strict=False))

    def predicate(address: str, hop: int) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
            ip = ip.ipv4_mapped
        return any(ip.version == net.version and ip in net for net in parsed)

    return predicate


def compile_trust(value: str | int | TrustPredicate | None) -> TrustPredicate:
    """
    Turn a configuration value into a trust predicate.

    Accepts an existing predicate, ``None``/"none", "all", a hop count
    (int or digit string), or a comma-separated list for trust_networks.
    """
    if value is None:
        return trust_none
    if callable(value):
        return value
    if isinstance(value, int):
        return trust_hops(value)
    text = value.strip().lower()
    if text in ("", "none", "false"):
        return trust_none
    if text in ("all", "true"):
        log.warning("address.trust_all", detail="every proxy hop is trusted")
        return trust_all
    if text.isdigit():
        return trust_hops(int(text))
    return trust_networks(value.split(","))


class AddressResolver:
    """Resolves the originating client address of a request."""

    def forwarded_chain(self, request: Request) -> List[str]:
        """Socket peer first, then X-Forwarded-For entries right to left."""
        peer = request.client.host if request.client else ""
        # Repeated headers concatenate in arrival order
        hops = []
        for header in request.headers.getlist("x-forwarded-for"):
            hops.extend(part.strip() for part in header.split(",") if part.strip())
        return [peer] + list(reversed(hops))

    def resolve(self, request: Request, trust: TrustPredicate) -> str:
        """
        Return the best-guess client address.

        Args:
            request: Incoming request
            trust: Predicate deciding which hops are trusted proxies

        Returns:
            The resolved address (empty string when the peer is unknown)
        """
        chain = self.forwarded_chain(request)
        for hop in range(len(chain) - 1):
            if not trust(chain[hop], hop):
                return chain[hop]
        return chain[-1]
