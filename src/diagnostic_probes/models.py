"""
Data models for the diagnostic probe engine.

This module defines all data structures produced by the probes: resolver
outcomes and statistics, TLS probe results and certificate metadata,
greylist attempts and verdicts, and normalized RDAP records. Every result
type exposes ``to_dict()`` returning the camelCase JSON wire shape.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .enums import Confidence

# Sentinel for RDAP fields the upstream registry did not provide
NOT_AVAILABLE = "Not available"


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class ResolverSpec:
    """A DNS resolver to benchmark."""

    address: str
    label: str


@dataclass(frozen=True)
class ResolverOutcome:
    """Result of querying a single resolver; created once, never retried."""

    resolver: str
    label: str
    succeeded: bool
    elapsed_ms: float
    records: Optional[tuple[str, ...]] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "resolver": self.resolver,
            "label": self.label,
            "succeeded": self.succeeded,
            "elapsedMs": self.elapsed_ms,
            "records": list(self.records) if self.records is not None else None,
            "failureReason": self.failure_reason,
        })


@dataclass(frozen=True)
class TimingExtreme:
    """Fastest or slowest resolver."""

    resolver: str
    time: float

    def to_dict(self) -> dict:
        return {"resolver": self.resolver, "time": self.time}


@dataclass(frozen=True)
class BenchStatistics:
    """Aggregate timing statistics for one resolver bench run."""

    fastest: TimingExtreme
    slowest: TimingExtreme
    average: float
    median: float
    success_rate: int

    def to_dict(self) -> dict:
        return {
            "fastest": self.fastest.to_dict(),
            "slowest": self.slowest.to_dict(),
            "average": self.average,
            "median": self.median,
            "successRate": self.success_rate,
        }


@dataclass
class BenchResult:
    """Complete resolver bench response."""

    domain: str
    record_type: str
    results: list[ResolverOutcome]
    statistics: BenchStatistics
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "recordType": self.record_type,
            "results": [r.to_dict() for r in self.results],
            "statistics": self.statistics.to_dict(),
            "timestamp": self.timestamp,
        }


@dataclass
class CertificateInfo:
    """Metadata of the certificate presented during a TLS handshake."""

    subject_cn: str
    issuer_cn: str
    valid_from: str
    valid_to: str
    days_until_expiry: int
    serial_number: str
    fingerprint: str
    fingerprint256: str
    subject_alt_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "subjectCN": self.subject_cn,
            "issuerCN": self.issuer_cn,
            "validFrom": self.valid_from,
            "validTo": self.valid_to,
            "daysUntilExpiry": self.days_until_expiry,
            "serialNumber": self.serial_number,
            "fingerprint": self.fingerprint,
            "fingerprint256": self.fingerprint256,
            "subjectAltNames": list(self.subject_alt_names),
        }


@dataclass
class TLSProbeResult:
    """Result of a mail TLS probe; STARTTLS and direct TLS share this shape."""

    domain: str
    port: int
    supports_starttls: bool = False
    supports_direct_tls: bool = False
    certificate: Optional[CertificateInfo] = None
    protocol_version: Optional[str] = None
    cipher_suite: Optional[str] = None
    timestamp: str = ""

    def to_dict(self) -> dict:
        return _drop_none({
            "domain": self.domain,
            "port": self.port,
            "supportsSTARTTLS": self.supports_starttls,
            "supportsDirectTLS": self.supports_direct_tls,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "tlsVersion": self.protocol_version,
            "cipherSuite": self.cipher_suite,
            "timestamp": self.timestamp,
        })


@dataclass(frozen=True)
class GreylistAttempt:
    """A single SMTP connection attempt."""

    attempt_number: int
    timestamp: str
    connected: bool
    elapsed_ms: float
    response_code: Optional[str] = None
    response_line: Optional[str] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "attemptNumber": self.attempt_number,
            "timestamp": self.timestamp,
            "connected": self.connected,
            "responseCode": self.response_code,
            "responseLine": self.response_line,
            "elapsedMs": self.elapsed_ms,
            "failureReason": self.failure_reason,
        })


@dataclass(frozen=True)
class GreylistVerdict:
    """Classification derived from a full attempt sequence."""

    initial_rejected: bool
    subsequent_accepted: bool
    confidence: Confidence
    typical_delay_seconds: Optional[int] = None

    @property
    def implements_greylisting(self) -> bool:
        return self.confidence != Confidence.NONE and self.initial_rejected

    def to_dict(self) -> dict:
        return _drop_none({
            "initialRejected": self.initial_rejected,
            "subsequentAccepted": self.subsequent_accepted,
            "typicalDelaySeconds": self.typical_delay_seconds,
            "confidence": self.confidence.value,
        })


@dataclass
class GreylistResult:
    """Complete greylist detector response."""

    domain: str
    port: int
    attempts: list[GreylistAttempt]
    analysis: GreylistVerdict
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "port": self.port,
            "implementsGreylisting": self.analysis.implements_greylisting,
            "attempts": [a.to_dict() for a in self.attempts],
            "analysis": self.analysis.to_dict(),
            "timestamp": self.timestamp,
        }


@dataclass
class RdapContact:
    """A contact entity reduced to its commonly displayed fields."""

    handle: str
    roles: list[str]
    name: str = NOT_AVAILABLE
    organization: str = NOT_AVAILABLE
    email: str = NOT_AVAILABLE
    phone: str = NOT_AVAILABLE

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "roles": list(self.roles),
            "name": self.name,
            "organization": self.organization,
            "email": self.email,
            "phone": self.phone,
        }


@dataclass
class DomainRecord:
    """Normalized RDAP domain object."""

    domain: str
    status: list[str]
    registrar: str
    nameservers: list[str]
    created: str
    updated: str
    expires: str
    contacts: list[RdapContact]

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "status": list(self.status),
            "registrar": self.registrar,
            "nameservers": list(self.nameservers),
            "created": self.created,
            "updated": self.updated,
            "expires": self.expires,
            "contacts": [c.to_dict() for c in self.contacts],
        }


@dataclass
class IpRecord:
    """Normalized RDAP IP network object."""

    network: str
    name: str
    type: str
    country: str
    status: list[str]
    allocation: str
    last_changed: str
    registry: str
    contacts: list[RdapContact]

    def to_dict(self) -> dict:
        return {
            "network": self.network,
            "name": self.name,
            "type": self.type,
            "country": self.country,
            "status": list(self.status),
            "allocation": self.allocation,
            "lastChanged": self.last_changed,
            "registry": self.registry,
            "contacts": [c.to_dict() for c in self.contacts],
        }


@dataclass
class AsnRecord:
    """Normalized RDAP autonomous system object."""

    asn: str
    name: str
    country: str
    type: str
    status: list[str]
    allocation: str
    last_changed: str
    registry: str
    contacts: list[RdapContact]

    def to_dict(self) -> dict:
        return {
            "asn": self.asn,
            "name": self.name,
            "country": self.country,
            "type": self.type,
            "status": list(self.status),
            "allocation": self.allocation,
            "lastChanged": self.last_changed,
            "registry": self.registry,
            "contacts": [c.to_dict() for c in self.contacts],
        }


NormalizedRecord = Union[DomainRecord, IpRecord, AsnRecord]


@dataclass
class RdapResult:
    """RDAP lookup result: normalized record plus the raw registry payload."""

    query_key: str  # 'domain', 'ip' or 'asn'
    query: str
    service_url: str
    normalized: NormalizedRecord
    raw: Any

    def to_dict(self) -> dict:
        return {
            self.query_key: self.query,
            "serviceUrl": self.service_url,
            "data": self.normalized.to_dict(),
            "raw": self.raw,
        }
