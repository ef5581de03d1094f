"""
Enumeration types for the diagnostic probe engine.

These enums provide type-safe constants for record types, failure classes,
protocol states and configuration options throughout the system.
"""

from enum import Enum


class RecordType(Enum):
    """DNS record types supported by the resolver bench."""

    A = "A"
    AAAA = "AAAA"
    MX = "MX"
    TXT = "TXT"
    NS = "NS"
    CNAME = "CNAME"
    SOA = "SOA"


class DNSFailureKind(Enum):
    """Classification of a failed per-resolver query."""

    DOMAIN_NOT_FOUND = "domain_not_found"
    NO_RECORDS = "no_records"
    TIMEOUT = "timeout"
    SERVER_FAILURE = "server_failure"
    REFUSED = "refused"
    OTHER = "other"


class Confidence(Enum):
    """Confidence level of a greylisting verdict."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class SMTPState(Enum):
    """States of the STARTTLS upgrade dialogue."""

    CONNECTED = "connected"
    AWAITING_GREETING = "awaiting_greeting"
    EHLO_SENT = "ehlo_sent"
    STARTTLS_REQUESTED = "starttls_requested"
    TLS_NEGOTIATING = "tls_negotiating"
    DONE = "done"
    FAILED = "failed"


class RdapQueryKind(Enum):
    """Kinds of object an RDAP lookup can target."""

    DOMAIN = "domain"
    IP = "ip"
    ASN = "asn"


class BootstrapRegistry(Enum):
    """IANA RDAP bootstrap directories."""

    DOMAIN = "domain"
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    ASN = "asn"


class ValidationErrorCode(Enum):
    """Error codes for input validation failures."""

    EMPTY_INPUT = "empty_input"
    INVALID_DOMAIN = "invalid_domain"
    IDNA_ERROR = "idna_error"
    INVALID_IP = "invalid_ip"
    INVALID_ASN = "invalid_asn"
    INVALID_RECORD_TYPE = "invalid_record_type"
    INVALID_NUMBER = "invalid_number"
    OUT_OF_RANGE = "out_of_range"
    INVALID_BODY = "invalid_body"
    UNKNOWN_ACTION = "unknown_action"
    NO_RESOLVERS = "no_resolvers"


class RdapErrorCode(Enum):
    """Error codes for RDAP client operations."""

    NO_SERVICE = "no_service"
    BOOTSTRAP_FAILED = "bootstrap_failed"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    PARSE_ERROR = "parse_error"
