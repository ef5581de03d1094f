"""
IANA RDAP bootstrap registry matching.

Parses the ``services`` array of a bootstrap document (RFC 9224) and picks
the RDAP service base URL responsible for a domain, IP address or AS number.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .enums import BootstrapRegistry, RdapErrorCode, RdapQueryKind
from .exceptions import NoServiceError, UpstreamError

NO_SERVICE_MESSAGES = {
    RdapQueryKind.DOMAIN: "No RDAP service found for this domain",
    RdapQueryKind.IP: "No RDAP service found for this IP address",
    RdapQueryKind.ASN: "No RDAP service found for this ASN",
}


@dataclass
class BootstrapService:
    """One entry of a bootstrap registry: patterns and their service URLs."""

    patterns: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)


def parse_registry(document: Any) -> list[BootstrapService]:
    """
    Read the services of a bootstrap document.

    Entries that are not ``[patterns, urls]`` pairs of strings are skipped.

    Raises:
        UpstreamError: If the document has no services array
    """
    services = document.get("services") if isinstance(document, dict) else None
    if not isinstance(services, list):
        raise UpstreamError(
            code=RdapErrorCode.PARSE_ERROR.value,
            message="Bootstrap registry has no services array",
        )

    parsed = []
    for entry in services:
        if not isinstance(entry, list) or len(entry) < 2:
            continue
        patterns, urls = entry[0], entry[1]
        if not isinstance(patterns, list) or not isinstance(urls, list):
            continue
        urls = [u for u in urls if isinstance(u, str) and u]
        if not urls:
            continue
        parsed.append(BootstrapService(
            patterns=[p for p in patterns if isinstance(p, str)],
            urls=urls,
        ))
    return parsed


def registry_for_ip(address: str) -> BootstrapRegistry:
    """Choose the IPv4 or IPv6 registry for an address literal."""
    if ipaddress.ip_address(address).version == 6:
        return BootstrapRegistry.IPV6
    return BootstrapRegistry.IPV4


def match_domain(services: list[BootstrapService], domain: str) -> Optional[str]:
    """Service URL whose patterns contain the domain's TLD."""
    tld = domain.rstrip(".").rsplit(".", 1)[-1].lower()
    if not tld:
        return None
    for service in services:
        if any(pattern.lower() == tld for pattern in service.patterns):
            return service.urls[0]
    return None


def _asn_range(pattern: str) -> Optional[tuple[int, int]]:
    start, _, end = pattern.strip().partition("-")
    try:
        low = int(start)
        high = int(end) if end else low
    except ValueError:
        return None
    return low, high


def match_asn(services: list[BootstrapService], asn: int) -> Optional[str]:
    """Service URL of the first range (``start-end`` or a single number) holding ``asn``."""
    for service in services:
        for pattern in service.patterns:
            bounds = _asn_range(pattern)
            if bounds and bounds[0] <= asn <= bounds[1]:
                return service.urls[0]
    return None


def match_ip(services: list[BootstrapService], address: str) -> Optional[str]:
    """
    Service URL of the most specific network containing ``address``.

    Patterns that do not parse as networks of the address's family are
    ignored.
    """
    ip = ipaddress.ip_address(address)
    best_url: Optional[str] = None
    best_prefix = -1

    for service in services:
        for pattern in service.patterns:
            try:
                network = ipaddress.ip_network(pattern.strip(), strict=False)
            except ValueError:
                continue
            if network.version != ip.version or ip not in network:
                continue
            if network.prefixlen > best_prefix:
                best_prefix = network.prefixlen
                best_url = service.urls[0]

    return best_url


def select_service(
    kind: RdapQueryKind,
    services: list[BootstrapService],
    query: Union[str, int],
) -> str:
    """
    Resolve the service base URL for a query.

    Raises:
        NoServiceError: If no bootstrap entry covers the query
    """
    if kind == RdapQueryKind.DOMAIN:
        url = match_domain(services, str(query))
    elif kind == RdapQueryKind.IP:
        url = match_ip(services, str(query))
    else:
        url = match_asn(services, int(query))

    if url is None:
        raise NoServiceError(
            code=RdapErrorCode.NO_SERVICE.value,
            message=NO_SERVICE_MESSAGES[kind],
            details={"query": str(query)},
        )
    return url
