"""
RDAP client for registration data lookups.

This module provides an async RDAP client that locates the responsible
registry through the IANA bootstrap files, queries it for a domain, IP
network or autonomous system, and normalizes the answer.
"""

import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import RdapConfig
from .enums import (
    BootstrapRegistry,
    LogLevel,
    RdapErrorCode,
    RdapQueryKind,
    ValidationErrorCode,
)
from .exceptions import ProbeError, UpstreamError, ValidationError
from .models import RdapResult
from .probe_logger import ProbeLogger
from .rdap_bootstrap import BootstrapService, parse_registry, registry_for_ip, select_service
from .rdap_normalizer import normalize_asn, normalize_domain, normalize_ip
from .validators import DomainValidator, parse_asn, require_ip

SERVICE_PATHS = {
    RdapQueryKind.DOMAIN: "domain",
    RdapQueryKind.IP: "ip",
    RdapQueryKind.ASN: "autnum",
}


class RdapClient:
    """
    Async RDAP client.

    Every lookup opens its own HTTP session and closes it before returning,
    so no connection outlives the lookup that opened it. The httpx transport
    is injectable so tests can serve canned registry answers.
    """

    COMPONENT = "RdapClient"

    def __init__(
        self,
        config: Optional[RdapConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[ProbeLogger] = None,
    ) -> None:
        """
        Initialize the RDAP client.

        Args:
            config: Bootstrap locations, timeout and user agent
            transport: Optional httpx transport replacing the network
            logger: Optional structured logger
        """
        self._config = config or RdapConfig()
        self._transport = transport
        self._logger = logger

    def _session(self) -> httpx.AsyncClient:
        """Open an HTTP session for the requests of a single lookup."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            follow_redirects=True,
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": "application/rdap+json, application/json",
            },
            transport=self._transport,
        )

    async def _get_json(self, client: httpx.AsyncClient, url: str) -> Any:
        """
        GET a URL and decode its JSON body.

        Raises:
            UpstreamError: On transport failure, timeout, non-2xx status or
                an undecodable body
        """
        try:
            response = await client.get(url)
        except httpx.TimeoutException:
            raise UpstreamError(
                code=RdapErrorCode.TIMEOUT.value,
                message=f"Request timed out after {self._config.timeout_seconds:g}s",
                details={"url": url},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(
                code=RdapErrorCode.NETWORK_ERROR.value,
                message=f"Connection error: {e}",
                details={"url": url},
            )

        if not response.is_success:
            raise UpstreamError(
                code=RdapErrorCode.HTTP_ERROR.value,
                message=f"{response.status_code} {response.reason_phrase}".strip(),
                details={"url": url},
                upstream_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                code=RdapErrorCode.PARSE_ERROR.value,
                message=f"Invalid JSON in response: {e}",
                details={"url": url},
                upstream_status=response.status_code,
            )

    async def fetch_bootstrap(
        self,
        client: httpx.AsyncClient,
        registry: BootstrapRegistry,
    ) -> list[BootstrapService]:
        """
        Download and parse one IANA bootstrap file.

        Raises:
            UpstreamError: If the file cannot be fetched or parsed
        """
        url = self._config.bootstrap_urls[registry.value]
        try:
            document = await self._get_json(client, url)
            return parse_registry(document)
        except UpstreamError as e:
            raise UpstreamError(
                code=RdapErrorCode.BOOTSTRAP_FAILED.value,
                message=f"Failed to fetch RDAP bootstrap registry: {e.message}",
                details={"registry": registry.value, **e.details},
                upstream_status=e.upstream_status,
            )

    async def query_service(
        self,
        client: httpx.AsyncClient,
        service_url: str,
        kind: RdapQueryKind,
        value: str,
    ) -> Any:
        """
        Query an RDAP service for one object.

        Raises:
            UpstreamError: If the service answers with an error or garbage
        """
        url = f"{service_url.rstrip('/')}/{SERVICE_PATHS[kind]}/{quote(value, safe='')}"
        start_time = time.perf_counter()
        try:
            payload = await self._get_json(client, url)
        except UpstreamError as e:
            raise UpstreamError(
                code=e.code,
                message=f"RDAP query failed: {e.message}",
                details=e.details,
                upstream_status=e.upstream_status,
            )

        if not isinstance(payload, dict):
            raise UpstreamError(
                code=RdapErrorCode.PARSE_ERROR.value,
                message="RDAP query failed: response is not a JSON object",
                details={"url": url},
            )

        self._log(
            LogLevel.DEBUG,
            f"RDAP {SERVICE_PATHS[kind]} query answered",
            {"url": url, "elapsed_ms": round((time.perf_counter() - start_time) * 1000, 2)},
        )
        return payload

    async def lookup_domain(self, domain: Any) -> RdapResult:
        """
        Look up a domain registration.

        Raises:
            ValidationError: If the input is not a dotted name
            NoServiceError: If no registry serves the TLD
            UpstreamError: If the bootstrap or service request fails
        """
        if not isinstance(domain, str) or "." not in domain.strip():
            raise ValidationError(
                code=ValidationErrorCode.INVALID_DOMAIN.value,
                message="Valid domain name required",
                details={"domain": domain},
            )
        canonical = DomainValidator().normalize_to_canonical(domain.strip()).rstrip(".")

        async with self._session() as client:
            services = await self.fetch_bootstrap(client, BootstrapRegistry.DOMAIN)
            service_url = select_service(RdapQueryKind.DOMAIN, services, canonical)
            payload = await self.query_service(client, service_url, RdapQueryKind.DOMAIN, canonical)

        self._log(LogLevel.INFO, f"RDAP domain lookup completed for {canonical}", {"service": service_url})
        return RdapResult(
            query_key="domain",
            query=canonical,
            service_url=service_url,
            normalized=normalize_domain(payload),
            raw=payload,
        )

    async def lookup_ip(self, ip: Any) -> RdapResult:
        """
        Look up the network registration covering an address.

        Raises:
            ValidationError: If the input is not an IP literal
            NoServiceError: If no registry block contains the address
            UpstreamError: If the bootstrap or service request fails
        """
        address = require_ip(ip)

        async with self._session() as client:
            services = await self.fetch_bootstrap(client, registry_for_ip(address))
            service_url = select_service(RdapQueryKind.IP, services, address)
            payload = await self.query_service(client, service_url, RdapQueryKind.IP, address)

        self._log(LogLevel.INFO, f"RDAP IP lookup completed for {address}", {"service": service_url})
        return RdapResult(
            query_key="ip",
            query=address,
            service_url=service_url,
            normalized=normalize_ip(payload),
            raw=payload,
        )

    async def lookup_asn(self, asn: Any) -> RdapResult:
        """
        Look up an autonomous system registration.

        Failures are logged as warnings and re-raised; there is no
        alternative data source.

        Raises:
            ValidationError: If the input is not an AS number
            NoServiceError: If no registry range contains the number
            UpstreamError: If the bootstrap or service request fails
        """
        number = parse_asn(asn)
        try:
            async with self._session() as client:
                services = await self.fetch_bootstrap(client, BootstrapRegistry.ASN)
                service_url = select_service(RdapQueryKind.ASN, services, number)
                payload = await self.query_service(client, service_url, RdapQueryKind.ASN, str(number))
        except ProbeError as e:
            self._log(
                LogLevel.WARN,
                "RDAP ASN lookup failed",
                {"asn": number, "error": e.message, "code": e.code},
            )
            raise

        self._log(LogLevel.INFO, f"RDAP ASN lookup completed for AS{number}", {"service": service_url})
        return RdapResult(
            query_key="asn",
            query=asn.strip() if isinstance(asn, str) else str(asn),
            service_url=service_url,
            normalized=normalize_asn(payload),
            raw=payload,
        )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
