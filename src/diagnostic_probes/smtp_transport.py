"""
Line-oriented transport for the SMTP probes.

Defines the transport interface the mail probes talk to, its asyncio stream
implementation (plain TCP, direct TLS, and in-place STARTTLS upgrade of the
already-open connection), and an SMTP reply reader.
"""

import asyncio
import contextlib
import re
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .exceptions import ProtocolError

REPLY_LINE_PATTERN = re.compile(r"^(\d{3})([ -]?)(.*)$")

MAX_REPLY_LINES = 100
MAX_LINE_BYTES = 4096
CLOSE_GRACE_SECONDS = 1.0


@dataclass
class TLSSession:
    """Snapshot of a negotiated TLS session."""

    protocol: Optional[str] = None
    cipher_suite: Optional[str] = None
    peer_certificate_der: Optional[bytes] = None


def session_from_ssl_object(ssl_object) -> Optional[TLSSession]:
    """Read protocol, cipher and the DER peer certificate from an SSL object."""
    if ssl_object is None:
        return None
    cipher = ssl_object.cipher()
    return TLSSession(
        protocol=ssl_object.version(),
        cipher_suite=f"{cipher[0]} ({cipher[1]})" if cipher else None,
        peer_certificate_der=ssl_object.getpeercert(binary_form=True),
    )


def make_inspection_context() -> ssl.SSLContext:
    """
    TLS client context that accepts any certificate.

    Only for the mail TLS probes, which report the presented certificate
    rather than trusting it.
    """
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class LineTransport(ABC):
    """Interface of a byte-line connection to a mail server."""

    @abstractmethod
    async def readline(self) -> bytes:
        """Read one line including its terminator; b"" at end of stream."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write and flush bytes."""

    @abstractmethod
    async def start_tls(self, context: ssl.SSLContext, server_hostname: str) -> TLSSession:
        """Upgrade the open connection to TLS in place."""

    @abstractmethod
    def tls_session(self) -> Optional[TLSSession]:
        """Session of an already-encrypted connection, if any."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection; safe to call more than once."""


# (host, port, ssl context or None) -> open transport
ConnectFunction = Callable[[str, int, Optional[ssl.SSLContext]], Awaitable["LineTransport"]]


class StreamTransport(LineTransport):
    """LineTransport over an asyncio StreamReader/StreamWriter pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> "StreamTransport":
        """
        Open a connection; with an SSL context the TLS handshake happens
        during connect (direct TLS).
        """
        if ssl_context is not None:
            reader, writer = await asyncio.open_connection(
                host, port, ssl=ssl_context, server_hostname=host, limit=MAX_LINE_BYTES
            )
        else:
            reader, writer = await asyncio.open_connection(host, port, limit=MAX_LINE_BYTES)
        return cls(reader, writer)

    async def readline(self) -> bytes:
        try:
            return await self._reader.readline()
        except ValueError as e:
            # line longer than the stream limit
            raise ProtocolError(
                code="line_too_long",
                message=f"Server sent a line longer than {MAX_LINE_BYTES} bytes",
                details={"error": str(e)},
            )

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def start_tls(self, context: ssl.SSLContext, server_hostname: str) -> TLSSession:
        await self._writer.start_tls(context, server_hostname=server_hostname)
        return self.tls_session() or TLSSession()

    def tls_session(self) -> Optional[TLSSession]:
        return session_from_ssl_object(self._writer.get_extra_info("ssl_object"))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(OSError, ssl.SSLError, asyncio.TimeoutError):
            await asyncio.wait_for(self._writer.wait_closed(), timeout=CLOSE_GRACE_SECONDS)


async def open_stream_transport(
    host: str,
    port: int,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> LineTransport:
    """Default connect function used by the mail probes."""
    return await StreamTransport.open(host, port, ssl_context)


@dataclass
class SMTPReply:
    """A complete (possibly multi-line) SMTP reply."""

    code: str
    lines: list[str] = field(default_factory=list)

    @property
    def first_line(self) -> str:
        return self.lines[0] if self.lines else ""

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def keywords(self) -> list[str]:
        """First word of every line after the code, upper-cased (EHLO capabilities)."""
        words = []
        for line in self.lines:
            rest = line[4:].strip()
            if rest:
                words.append(rest.split()[0].upper())
        return words

    def advertises(self, capability: str) -> bool:
        return capability.upper() in self.keywords()


def parse_reply_line(line: str) -> Optional[tuple[str, bool]]:
    """Return (code, is_last) for an SMTP reply line, or None if malformed."""
    match = REPLY_LINE_PATTERN.match(line)
    if not match:
        return None
    return match.group(1), match.group(2) != "-"


class SMTPReplyReader:
    """
    Reads SMTP replies from a LineTransport.

    A continuation line followed by a line carrying a different code ends
    the current reply; the foreign line is kept for the next read.
    """

    def __init__(self, transport: LineTransport) -> None:
        self._transport = transport
        self._pending: Optional[str] = None

    async def _next_line(self) -> Optional[str]:
        if self._pending is not None:
            line, self._pending = self._pending, None
            return line
        raw = await self._transport.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def read_reply(self) -> SMTPReply:
        """
        Read one complete reply.

        Raises:
            ProtocolError: On end of stream before a reply or a malformed line
        """
        lines: list[str] = []
        code: Optional[str] = None

        while True:
            line = await self._next_line()
            if line is None:
                raise ProtocolError(
                    code="connection_closed",
                    message="Connection closed before a complete reply",
                    details={"partial": lines},
                )

            parsed = parse_reply_line(line)
            if parsed is None:
                raise ProtocolError(
                    code="malformed_reply",
                    message=f"Malformed SMTP reply line: {line[:80]!r}",
                )

            line_code, is_last = parsed
            if code is not None and line_code != code:
                self._pending = line
                return SMTPReply(code=code, lines=lines)

            code = line_code
            lines.append(line)
            if is_last:
                return SMTPReply(code=code, lines=lines)
            if len(lines) >= MAX_REPLY_LINES:
                raise ProtocolError(
                    code="reply_too_long",
                    message=f"SMTP reply exceeded {MAX_REPLY_LINES} lines",
                )
