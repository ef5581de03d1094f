"""
Diagnostic Probes - Network protocol diagnostic probe engine.

This package opens DNS queries, SMTP sessions, TLS handshakes and RDAP
requests against user-supplied targets, enforces timeouts and bounds on
every step, and reduces the results to structured JSON verdicts.
"""

__version__ = "0.1.0"
__author__ = "Diagnostic Probes Team"

from diagnostic_probes.exceptions import (
    ProbeError,
    ValidationError,
    ProtocolError,
    NoServiceError,
    UpstreamError,
)
from diagnostic_probes.enums import (
    RecordType,
    DNSFailureKind,
    Confidence,
    LogLevel,
    SMTPState,
    RdapQueryKind,
    BootstrapRegistry,
    ValidationErrorCode,
    RdapErrorCode,
)
from diagnostic_probes.config import (
    ResolverBenchConfig,
    MailTLSConfig,
    GreylistConfig,
    RdapConfig,
    ServerConfig,
    LoggingConfig,
    SystemConfig,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    apply_env_overrides,
)
from diagnostic_probes.models import (
    NOT_AVAILABLE,
    ResolverSpec,
    ResolverOutcome,
    BenchStatistics,
    BenchResult,
    CertificateInfo,
    TLSProbeResult,
    GreylistAttempt,
    GreylistVerdict,
    GreylistResult,
    RdapContact,
    DomainRecord,
    IpRecord,
    AsnRecord,
    RdapResult,
)
from diagnostic_probes.validators import (
    DomainValidator,
    DomainValidationResult,
    DomainValidationError,
)
from diagnostic_probes.probe_logger import (
    ProbeLogger,
    LogEntry,
)
from diagnostic_probes.resolver_bench import (
    ResolverBench,
    compute_statistics,
    classify_failure,
)
from diagnostic_probes.smtp_transport import (
    LineTransport,
    StreamTransport,
    SMTPReply,
    SMTPReplyReader,
    TLSSession,
)
from diagnostic_probes.mail_tls import (
    MailTLSProber,
    transition,
    certificate_from_der,
)
from diagnostic_probes.greylist import (
    GreylistDetector,
    analyze_attempts,
)
from diagnostic_probes.rdap_bootstrap import (
    BootstrapService,
    parse_registry,
    select_service,
)
from diagnostic_probes.rdap_normalizer import (
    normalize_domain,
    normalize_ip,
    normalize_asn,
)
from diagnostic_probes.rdap_client import (
    RdapClient,
)
from diagnostic_probes.orchestrator import (
    ProbeOrchestrator,
)
from diagnostic_probes.server import (
    create_app,
    run_server,
)
from diagnostic_probes.cli import (
    main as cli_main,
    create_parser,
)

__all__ = [
    # Exceptions
    "ProbeError",
    "ValidationError",
    "ProtocolError",
    "NoServiceError",
    "UpstreamError",
    # Enums
    "RecordType",
    "DNSFailureKind",
    "Confidence",
    "LogLevel",
    "SMTPState",
    "RdapQueryKind",
    "BootstrapRegistry",
    "ValidationErrorCode",
    "RdapErrorCode",
    # Configuration
    "ResolverBenchConfig",
    "MailTLSConfig",
    "GreylistConfig",
    "RdapConfig",
    "ServerConfig",
    "LoggingConfig",
    "SystemConfig",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "apply_env_overrides",
    # Models
    "NOT_AVAILABLE",
    "ResolverSpec",
    "ResolverOutcome",
    "BenchStatistics",
    "BenchResult",
    "CertificateInfo",
    "TLSProbeResult",
    "GreylistAttempt",
    "GreylistVerdict",
    "GreylistResult",
    "RdapContact",
    "DomainRecord",
    "IpRecord",
    "AsnRecord",
    "RdapResult",
    # Validators
    "DomainValidator",
    "DomainValidationResult",
    "DomainValidationError",
    # Logger
    "ProbeLogger",
    "LogEntry",
    # Resolver Bench
    "ResolverBench",
    "compute_statistics",
    "classify_failure",
    # SMTP transport
    "LineTransport",
    "StreamTransport",
    "SMTPReply",
    "SMTPReplyReader",
    "TLSSession",
    # Mail TLS
    "MailTLSProber",
    "transition",
    "certificate_from_der",
    # Greylist
    "GreylistDetector",
    "analyze_attempts",
    # RDAP
    "BootstrapService",
    "parse_registry",
    "select_service",
    "normalize_domain",
    "normalize_ip",
    "normalize_asn",
    "RdapClient",
    # Orchestrator
    "ProbeOrchestrator",
    # Server
    "create_app",
    "run_server",
    # CLI
    "cli_main",
    "create_parser",
]
