"""
Input validation and normalization module.

Every probe target passes through this module before any socket, DNS or
HTTP call is made. Provides domain validation and normalization to canonical
form (lowercase, IDNA), IP literal validation, ASN parsing and the numeric
range checks used by the request layer.
"""

import ipaddress
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

import idna

from .enums import RecordType, ValidationErrorCode
from .exceptions import ValidationError


MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63

# DNS query names: underscores allowed (e.g. _dmarc), at least two labels,
# alphabetic or IDNA final label
QUERY_NAME_PATTERN = re.compile(
    r"^([a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9_])?\.)+"
    r"([a-z]{2,63}|xn--[a-z0-9-]{1,59})$"
)

# Mail hosts: RFC 1123 labels, a single label is accepted
HOSTNAME_PATTERN = re.compile(
    r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?"
    r"(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"
)

ASN_PATTERN = re.compile(r"^(?:AS)?(\d{1,10})$", re.IGNORECASE)


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: ValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[DomainValidationError]


class DomainValidator:
    """
    Validates and normalizes domain names.

    Two grammars are supported:
    - ``query_name``: names handed to DNS resolvers (underscores allowed,
      at least two labels)
    - ``hostname``: mail server host names (RFC 1123, single label allowed)
    """

    GRAMMARS = {
        "query_name": QUERY_NAME_PATTERN,
        "hostname": HOSTNAME_PATTERN,
    }

    INVALID_MESSAGES = {
        "query_name": "Invalid domain name format",
        "hostname": "Invalid domain format",
    }

    def __init__(self, grammar: str = "query_name") -> None:
        if grammar not in self.GRAMMARS:
            raise ValueError(f"Unknown domain grammar: {grammar}")
        self._grammar = grammar
        self._pattern = self.GRAMMARS[grammar]

    def validate(self, raw_domain: Any) -> DomainValidationResult:
        """
        Validate and normalize a domain string.

        Args:
            raw_domain: The raw domain value from the request

        Returns:
            DomainValidationResult with validation status and canonical form or error
        """
        if not isinstance(raw_domain, str) or not raw_domain.strip():
            return DomainValidationResult(
                valid=False,
                canonical_domain=None,
                error=DomainValidationError(
                    code=ValidationErrorCode.EMPTY_INPUT,
                    message="Domain is required",
                    details={"raw_input": raw_domain},
                ),
            )

        try:
            canonical = self.normalize_to_canonical(raw_domain.strip())
        except ValidationError as e:
            return DomainValidationResult(
                valid=False,
                canonical_domain=None,
                error=DomainValidationError(
                    code=ValidationErrorCode.IDNA_ERROR,
                    message=e.message,
                    details=e.details,
                ),
            )

        if not self.is_well_formed(canonical):
            return DomainValidationResult(
                valid=False,
                canonical_domain=None,
                error=DomainValidationError(
                    code=ValidationErrorCode.INVALID_DOMAIN,
                    message=self.INVALID_MESSAGES[self._grammar],
                    details={"raw_input": raw_domain, "grammar": self._grammar},
                ),
            )

        return DomainValidationResult(valid=True, canonical_domain=canonical, error=None)

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Convert domain to canonical form (lowercase, IDNA-encoded).

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower()

        if not any(ord(c) > 127 for c in domain_lower):
            return domain_lower

        try:
            return idna.encode(domain_lower, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code=ValidationErrorCode.IDNA_ERROR.value,
                message=f"IDNA encoding failed: {e}",
                details={"domain": domain, "idna_error": str(e)},
            )

    def is_well_formed(self, canonical: str) -> bool:
        """Check length limits and the grammar on an already-canonical name."""
        if len(canonical) > MAX_DOMAIN_LENGTH:
            return False
        if any(len(label) > MAX_LABEL_LENGTH for label in canonical.split(".")):
            return False
        return bool(self._pattern.match(canonical))


def require_domain(raw_domain: Any, grammar: str = "query_name") -> str:
    """Validate a domain and return its canonical form, or raise ValidationError."""
    result = DomainValidator(grammar).validate(raw_domain)
    if not result.valid:
        raise ValidationError(
            code=result.error.code.value,
            message=result.error.message,
            details=result.error.details,
        )
    return result.canonical_domain


def canonical_ip(value: Any) -> Optional[str]:
    """
    Return the canonical text form of an IPv4/IPv6 literal.

    Returns None for anything that is not a string holding a valid address.
    """
    if not isinstance(value, str) or len(value) > 45:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def require_ip(value: Any) -> str:
    """Validate an IP literal or raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            code=ValidationErrorCode.EMPTY_INPUT.value,
            message="IP address required",
        )
    ip = canonical_ip(value)
    if ip is None:
        raise ValidationError(
            code=ValidationErrorCode.INVALID_IP.value,
            message="Invalid IP address format",
            details={"ip": value},
        )
    return ip


def parse_asn(value: Any) -> int:
    """
    Parse an ASN string with an optional leading ``AS``.

    Raises:
        ValidationError: If the value is empty or not an AS number
    """
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            code=ValidationErrorCode.EMPTY_INPUT.value,
            message="ASN required",
        )
    match = ASN_PATTERN.match(value.strip())
    if not match or int(match.group(1)) > 0xFFFFFFFF:
        raise ValidationError(
            code=ValidationErrorCode.INVALID_ASN.value,
            message="Invalid ASN format",
            details={"asn": value},
        )
    return int(match.group(1))


def parse_record_type(value: Any) -> RecordType:
    """Parse a record type name case-insensitively."""
    supported = ", ".join(t.value for t in RecordType)
    if not isinstance(value, str):
        raise ValidationError(
            code=ValidationErrorCode.INVALID_RECORD_TYPE.value,
            message=f"Invalid record type. Supported types: {supported}",
        )
    try:
        return RecordType(value.strip().upper())
    except ValueError:
        raise ValidationError(
            code=ValidationErrorCode.INVALID_RECORD_TYPE.value,
            message=f"Invalid record type. Supported types: {supported}",
            details={"record_type": value},
        )


def coerce_number(value: Any) -> Optional[float]:
    """
    Interpret a JSON value as a number the way a lenient client expects.

    Numbers and numeric strings are accepted; booleans, NaN and everything
    else yield None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def require_int_in_range(value: Any, low: int, high: int, message: str) -> int:
    """Accept an integral number within [low, high] or raise ValidationError."""
    number = coerce_number(value)
    if number is None or not number.is_integer() or not low <= number <= high:
        raise ValidationError(
            code=ValidationErrorCode.OUT_OF_RANGE.value,
            message=message,
            details={"value": value, "min": low, "max": high},
        )
    return int(number)


def require_number_in_range(value: Any, low: float, high: float, message: str) -> float:
    """Accept any number within [low, high] or raise ValidationError."""
    number = coerce_number(value)
    if number is None or not low <= number <= high:
        raise ValidationError(
            code=ValidationErrorCode.OUT_OF_RANGE.value,
            message=message,
            details={"value": value, "min": low, "max": high},
        )
    return number


def require_port(value: Any) -> int:
    """Validate a TCP port number."""
    return require_int_in_range(value, 1, 65535, "Invalid port number")


def clamp_timeout_ms(value: Any, low: int, high: int) -> int:
    """
    Clamp a timeout into [low, high] milliseconds.

    Out-of-range numbers are clamped; non-numbers raise ValidationError.
    """
    number = coerce_number(value) if not isinstance(value, str) else None
    if number is None:
        raise ValidationError(
            code=ValidationErrorCode.INVALID_NUMBER.value,
            message="timeoutMs must be a valid number",
            details={"value": value},
        )
    return int(max(low, min(high, number)))
