"""
Mail TLS Prober.

Determines whether a mail server offers STARTTLS (or direct TLS on the
submissions port) and reports the negotiated protocol, cipher and the
certificate the server presents. Certificates are inspected, not trusted.
"""

import asyncio
import hashlib
import math
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

from .config import MailTLSConfig
from .enums import LogLevel, SMTPState
from .exceptions import ProtocolError
from .models import CertificateInfo, TLSProbeResult
from .probe_logger import ProbeLogger
from .smtp_transport import (
    ConnectFunction,
    LineTransport,
    SMTPReply,
    SMTPReplyReader,
    TLSSession,
    make_inspection_context,
    open_stream_transport,
)
from .validators import require_domain, require_port

TEMPORARY_GREETING_CODES = frozenset({"421", "450", "451"})


def transition(
    state: SMTPState,
    reply: Optional[SMTPReply],
    ehlo_name: str = "client.local",
) -> tuple[SMTPState, Optional[str]]:
    """
    Advance the STARTTLS dialogue by one server reply.

    Returns the next state and the command to send, if any. A completed
    handshake is fed as ``None`` in TLS_NEGOTIATING and finishes the dialogue
    in DONE. DONE and FAILED never advance, nor does TLS_NEGOTIATING on a
    server reply.
    """
    if state == SMTPState.CONNECTED:
        return SMTPState.AWAITING_GREETING, None

    if state in (SMTPState.DONE, SMTPState.FAILED):
        return state, None

    if state == SMTPState.TLS_NEGOTIATING and reply is None:
        return SMTPState.DONE, None

    if reply is None:
        return SMTPState.FAILED, None

    if state == SMTPState.AWAITING_GREETING:
        if reply.code == "220":
            return SMTPState.EHLO_SENT, f"EHLO {ehlo_name}"
        return SMTPState.FAILED, None

    if state == SMTPState.EHLO_SENT:
        if reply.code == "250" and reply.advertises("STARTTLS"):
            return SMTPState.STARTTLS_REQUESTED, "STARTTLS"
        return SMTPState.FAILED, None

    if state == SMTPState.STARTTLS_REQUESTED:
        if reply.code == "220":
            return SMTPState.TLS_NEGOTIATING, None
        return SMTPState.FAILED, None

    return state, None


def _colon_hex(data: bytes) -> str:
    return ":".join(f"{b:02X}" for b in data)


def _common_name(name: x509.Name) -> str:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else ""


def certificate_from_der(der: bytes, now: Optional[datetime] = None) -> CertificateInfo:
    """
    Extract display metadata from a DER-encoded certificate.

    Raises:
        ValueError: If the bytes are not a parsable X.509 certificate
    """
    cert = x509.load_der_x509_certificate(der)
    now = now or datetime.now(timezone.utc)

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        alt_names = san.get_values_for_type(x509.DNSName) + [
            str(ip) for ip in san.get_values_for_type(x509.IPAddress)
        ]
    except x509.ExtensionNotFound:
        alt_names = []

    serial = format(cert.serial_number, "X")
    if len(serial) % 2:
        serial = "0" + serial

    not_after = cert.not_valid_after_utc
    return CertificateInfo(
        subject_cn=_common_name(cert.subject),
        issuer_cn=_common_name(cert.issuer),
        valid_from=cert.not_valid_before_utc.isoformat(),
        valid_to=not_after.isoformat(),
        days_until_expiry=math.floor((not_after - now).total_seconds() / 86400),
        serial_number=serial,
        fingerprint=_colon_hex(hashlib.sha1(der).digest()),
        fingerprint256=_colon_hex(hashlib.sha256(der).digest()),
        subject_alt_names=alt_names,
    )


@dataclass
class TLSCheckOutcome:
    """Outcome of one TLS capability check."""

    supported: bool
    session: Optional[TLSSession] = None


class MailTLSProber:
    """
    Probes a mail server for STARTTLS or direct TLS support.

    Port 465 runs the direct TLS check only; every other port runs the
    STARTTLS dialogue only. The connect function is injectable so scripted
    transports can stand in for sockets.
    """

    COMPONENT = "MailTLSProber"

    def __init__(
        self,
        config: Optional[MailTLSConfig] = None,
        connect: Optional[ConnectFunction] = None,
        logger: Optional[ProbeLogger] = None,
    ) -> None:
        self._config = config or MailTLSConfig()
        self._connect = connect or open_stream_transport
        self._logger = logger

    async def probe(self, domain: str, port: Optional[int] = None) -> TLSProbeResult:
        """
        Run the TLS check that applies to ``port``.

        Raises:
            ValidationError: If the domain or port is malformed
        """
        canonical = require_domain(domain, "hostname")
        port = require_port(self._config.default_port if port is None else port)

        result = TLSProbeResult(domain=canonical, port=port)

        if port == self._config.direct_tls_port:
            outcome = await self.check_direct_tls(canonical, port)
            result.supports_direct_tls = outcome.supported
        else:
            outcome = await self.check_starttls(canonical, port)
            result.supports_starttls = outcome.supported

        if outcome.session is not None:
            self._apply_session(result, outcome.session)

        result.timestamp = datetime.now(timezone.utc).isoformat()
        self._log(
            LogLevel.INFO,
            f"Mail TLS probe completed for {canonical}:{port}",
            {
                "starttls": result.supports_starttls,
                "direct_tls": result.supports_direct_tls,
                "tls_version": result.protocol_version,
            },
        )
        return result

    async def check_starttls(self, domain: str, port: int) -> TLSCheckOutcome:
        """Run the STARTTLS dialogue under the overall deadline."""
        try:
            return await asyncio.wait_for(
                self._starttls_dialogue(domain, port),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._log(
                LogLevel.DEBUG,
                f"STARTTLS dialogue with {domain}:{port} timed out",
                {"timeout_seconds": self._config.timeout_seconds},
            )
            return TLSCheckOutcome(supported=False)

    async def check_direct_tls(self, domain: str, port: int) -> TLSCheckOutcome:
        """Connect with TLS from the first byte under the overall deadline."""
        try:
            return await asyncio.wait_for(
                self._direct_tls_handshake(domain, port),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._log(
                LogLevel.DEBUG,
                f"Direct TLS handshake with {domain}:{port} timed out",
                {"timeout_seconds": self._config.timeout_seconds},
            )
            return TLSCheckOutcome(supported=False)

    async def _starttls_dialogue(self, domain: str, port: int) -> TLSCheckOutcome:
        transport: Optional[LineTransport] = None
        try:
            transport = await self._connect(domain, port, None)
            reader = SMTPReplyReader(transport)
            state, _ = transition(SMTPState.CONNECTED, None)

            while state not in (SMTPState.TLS_NEGOTIATING, SMTPState.FAILED):
                reply = await reader.read_reply()
                previous = state
                state, command = transition(state, reply, self._config.ehlo_name)

                if (
                    previous == SMTPState.AWAITING_GREETING
                    and reply.code in TEMPORARY_GREETING_CODES
                ):
                    self._log(
                        LogLevel.INFO,
                        f"{domain}:{port} is reachable but not ready",
                        {"greeting": reply.first_line},
                    )
                if command:
                    await transport.write(command.encode("ascii") + b"\r\n")

            if state == SMTPState.FAILED:
                return TLSCheckOutcome(supported=False)

            # server agreed to STARTTLS; a failed handshake still counts as support
            try:
                session = await transport.start_tls(make_inspection_context(), domain)
            except (ssl.SSLError, OSError) as e:
                self._log(
                    LogLevel.DEBUG,
                    f"TLS handshake after STARTTLS failed for {domain}:{port}",
                    {"error": str(e)},
                )
                return TLSCheckOutcome(supported=True)

            state, _ = transition(state, None)
            self._log(
                LogLevel.DEBUG,
                f"STARTTLS dialogue with {domain}:{port} finished",
                {"state": state.value, "protocol": session.protocol},
            )
            return TLSCheckOutcome(supported=True, session=session)

        except (OSError, ProtocolError) as e:
            self._log(
                LogLevel.DEBUG,
                f"STARTTLS dialogue with {domain}:{port} failed",
                {"error": str(e), "error_type": type(e).__name__},
            )
            return TLSCheckOutcome(supported=False)
        finally:
            if transport is not None:
                await transport.close()

    async def _direct_tls_handshake(self, domain: str, port: int) -> TLSCheckOutcome:
        transport: Optional[LineTransport] = None
        try:
            transport = await self._connect(domain, port, make_inspection_context())
            return TLSCheckOutcome(supported=True, session=transport.tls_session())
        except (ssl.SSLError, OSError) as e:
            self._log(
                LogLevel.DEBUG,
                f"Direct TLS handshake with {domain}:{port} failed",
                {"error": str(e), "error_type": type(e).__name__},
            )
            return TLSCheckOutcome(supported=False)
        finally:
            if transport is not None:
                await transport.close()

    def _apply_session(self, result: TLSProbeResult, session: TLSSession) -> None:
        result.protocol_version = session.protocol
        result.cipher_suite = session.cipher_suite
        if session.peer_certificate_der:
            try:
                result.certificate = certificate_from_der(session.peer_certificate_der)
            except ValueError as e:
                self._log(
                    LogLevel.WARN,
                    f"Unparsable peer certificate from {result.domain}",
                    {"error": str(e)},
                )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
