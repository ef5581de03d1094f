"""
Probe Orchestrator for the diagnostic probe engine.

This module is the request handler layer shared by the HTTP server and the
CLI. It reads JSON request bodies, applies the documented defaults, hands
validated parameters to the probe components and returns the JSON response
shapes. It integrates:
- Resolver Bench (DNS resolver performance)
- Mail TLS Prober (STARTTLS / direct TLS)
- Greylist Detector (time-spaced SMTP attempts)
- RDAP client (bootstrap lookup, query, normalization)
"""

from typing import Any, Optional

from .config import SystemConfig, create_default_config
from .enums import LogLevel, RecordType, ValidationErrorCode
from .exceptions import ValidationError
from .greylist import GreylistDetector
from .mail_tls import MailTLSProber
from .probe_logger import ProbeLogger
from .rdap_client import RdapClient
from .resolver_bench import ResolverBench
from .validators import parse_record_type

RDAP_ACTIONS = ("domain-lookup", "ip-lookup", "asn-lookup")


def _require_object(body: Any) -> dict:
    if not isinstance(body, dict):
        raise ValidationError(
            code=ValidationErrorCode.INVALID_BODY.value,
            message="Request body must be a JSON object",
        )
    return body


def _or_default(body: dict, key: str, default: Any) -> Any:
    value = body.get(key)
    return default if value is None else value


class ProbeOrchestrator:
    """
    Coordinates the four probe components.

    Each ``handle_*`` method takes a decoded request body and returns the
    response dictionary; validation failures raise ValidationError and RDAP
    failures raise NoServiceError or UpstreamError. Components can be
    injected for testing.
    """

    COMPONENT = "ProbeOrchestrator"

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        logger: Optional[ProbeLogger] = None,
        resolver_bench: Optional[ResolverBench] = None,
        mail_tls_prober: Optional[MailTLSProber] = None,
        greylist_detector: Optional[GreylistDetector] = None,
        rdap_client: Optional[RdapClient] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: System configuration (defaults applied when omitted)
            logger: Optional probe logger shared with every component
            resolver_bench: Optional preconfigured Resolver Bench
            mail_tls_prober: Optional preconfigured Mail TLS Prober
            greylist_detector: Optional preconfigured Greylist Detector
            rdap_client: Optional preconfigured RDAP client
        """
        self._config = config or create_default_config()
        self._logger = logger

        self._resolver_bench = resolver_bench or ResolverBench(
            self._config.resolver_bench, logger=logger
        )
        self._mail_tls = mail_tls_prober or MailTLSProber(self._config.mail_tls, logger=logger)
        self._greylist = greylist_detector or GreylistDetector(self._config.greylist, logger=logger)
        self._rdap = rdap_client or RdapClient(self._config.rdap, logger=logger)

    @property
    def config(self) -> SystemConfig:
        return self._config

    async def handle_dns_performance(self, body: Any) -> dict:
        """
        Benchmark resolvers for ``domain``.

        Body: ``domain``, ``recordType`` (default A), ``customResolvers``
        (list, default empty), ``includeDefaultResolvers`` (default true),
        ``timeoutMs`` (default from configuration).
        """
        body = _require_object(body)
        domain = body.get("domain")
        record_type: RecordType = parse_record_type(_or_default(body, "recordType", "A"))

        custom_resolvers = _or_default(body, "customResolvers", [])
        if not isinstance(custom_resolvers, list):
            raise ValidationError(
                code=ValidationErrorCode.INVALID_BODY.value,
                message="customResolvers must be an array",
            )

        result = await self._resolver_bench.run(
            domain,
            record_type=record_type,
            custom_resolvers=custom_resolvers,
            include_defaults=bool(_or_default(body, "includeDefaultResolvers", True)),
            timeout_ms=body.get("timeoutMs"),
        )
        return result.to_dict()

    async def handle_mail_tls(self, body: Any) -> dict:
        """Probe ``domain``:``port`` (default 25) for TLS support."""
        body = _require_object(body)
        result = await self._mail_tls.probe(body.get("domain"), body.get("port"))
        return result.to_dict()

    async def handle_greylist(self, body: Any) -> dict:
        """Sample ``domain``:``port`` greetings ``attempts`` times, ``delayBetweenAttempts`` apart."""
        body = _require_object(body)
        result = await self._greylist.run(
            body.get("domain"),
            port=body.get("port"),
            attempts=body.get("attempts"),
            delay_seconds=body.get("delayBetweenAttempts"),
        )
        return result.to_dict()

    async def handle_rdap(self, body: Any) -> dict:
        """Dispatch an RDAP ``action`` (domain-lookup, ip-lookup, asn-lookup)."""
        body = _require_object(body)
        action = body.get("action")

        if action == "domain-lookup":
            result = await self._rdap.lookup_domain(body.get("domain"))
        elif action == "ip-lookup":
            result = await self._rdap.lookup_ip(body.get("ip"))
        elif action == "asn-lookup":
            result = await self._rdap.lookup_asn(body.get("asn"))
        else:
            self._log(LogLevel.DEBUG, "Rejected unknown RDAP action", {"action": action})
            raise ValidationError(
                code=ValidationErrorCode.UNKNOWN_ACTION.value,
                message=f"Unknown action: {action}",
                details={"supported": list(RDAP_ACTIONS)},
            )

        return result.to_dict()

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
