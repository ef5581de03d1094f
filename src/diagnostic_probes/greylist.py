"""
Greylist Detector.

Connects to a mail server several times, spaced by a configurable delay,
records the greeting of each attempt and classifies whether the server
temporarily rejects first contact and accepts later retries.
"""

import asyncio
import math
import re
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from .config import GreylistConfig
from .enums import Confidence, LogLevel
from .exceptions import ProtocolError
from .models import GreylistAttempt, GreylistResult, GreylistVerdict
from .probe_logger import ProbeLogger
from .smtp_transport import (
    MAX_REPLY_LINES,
    ConnectFunction,
    LineTransport,
    open_stream_transport,
)
from .validators import require_domain, require_int_in_range, require_number_in_range, require_port

SleepFunction = Callable[[float], Awaitable[None]]

CODE_LINE_PATTERN = re.compile(r"^\d{3}")

# greetings after which the server is considered reachable
CONNECTED_CODES = frozenset({"220", "421", "450", "451"})
TEMPORARY_REJECT_CODES = frozenset({"421", "450", "451"})
REJECTION_PHRASES = ("greylist", "try again", "temporary")
GREYLIST_PHRASES = ("greylist", "greylisted")


def analyze_attempts(attempts: Sequence[GreylistAttempt]) -> GreylistVerdict:
    """
    Classify an attempt sequence by comparing its first and last attempts.

    Fewer than two attempts give no verdict.
    """
    if len(attempts) < 2:
        return GreylistVerdict(
            initial_rejected=False,
            subsequent_accepted=False,
            confidence=Confidence.NONE,
        )

    first, last = attempts[0], attempts[-1]
    first_line = (first.response_line or "").lower()

    initial_rejected = first.response_code in TEMPORARY_REJECT_CODES or any(
        phrase in first_line for phrase in REJECTION_PHRASES
    )
    subsequent_accepted = last.response_code == "220" or (
        last.connected and not last.failure_reason and last.response_code != "421"
    )

    if initial_rejected and subsequent_accepted:
        elapsed = (
            datetime.fromisoformat(last.timestamp) - datetime.fromisoformat(first.timestamp)
        ).total_seconds()
        if any(phrase in first_line for phrase in GREYLIST_PHRASES):
            confidence = Confidence.HIGH
        elif first.response_code in ("450", "451"):
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return GreylistVerdict(
            initial_rejected=True,
            subsequent_accepted=True,
            confidence=confidence,
            typical_delay_seconds=int(math.floor(elapsed + 0.5)),
        )

    if all(a.response_code == first.response_code for a in attempts):
        confidence = Confidence.NONE
    else:
        confidence = Confidence.LOW

    return GreylistVerdict(
        initial_rejected=initial_rejected,
        subsequent_accepted=subsequent_accepted,
        confidence=confidence,
    )


class GreylistDetector:
    """
    Strictly sequential SMTP greeting sampler.

    Attempt N+1 never starts before attempt N has finished and the delay has
    elapsed. Connect and sleep functions are injectable.
    """

    COMPONENT = "GreylistDetector"

    def __init__(
        self,
        config: Optional[GreylistConfig] = None,
        connect: Optional[ConnectFunction] = None,
        sleep: Optional[SleepFunction] = None,
        logger: Optional[ProbeLogger] = None,
    ) -> None:
        self._config = config or GreylistConfig()
        self._connect = connect or open_stream_transport
        self._sleep = sleep or asyncio.sleep
        self._logger = logger

    async def run(
        self,
        domain: str,
        port: Optional[int] = None,
        attempts: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ) -> GreylistResult:
        """
        Sample the server greeting ``attempts`` times and classify the result.

        Raises:
            ValidationError: If any parameter is malformed or out of range
        """
        config = self._config
        canonical = require_domain(domain, "hostname")
        port = require_port(config.default_port if port is None else port)
        count = require_int_in_range(
            config.default_attempts if attempts is None else attempts,
            config.min_attempts,
            config.max_attempts,
            f"Attempts must be between {config.min_attempts} and {config.max_attempts}",
        )
        delay = require_number_in_range(
            config.default_delay_seconds if delay_seconds is None else delay_seconds,
            config.min_delay_seconds,
            config.max_delay_seconds,
            f"Delay must be between {config.min_delay_seconds:g} and "
            f"{config.max_delay_seconds:g} seconds",
        )

        self._log(
            LogLevel.INFO,
            f"Greylist test started for {canonical}:{port}",
            {"attempts": count, "delay_seconds": delay},
        )

        results: list[GreylistAttempt] = []
        for number in range(1, count + 1):
            if number > 1:
                await self._sleep(delay)
            results.append(await self.attempt(canonical, port, number))

        verdict = analyze_attempts(results)
        self._log(
            LogLevel.INFO,
            f"Greylist test completed for {canonical}:{port}",
            {
                "confidence": verdict.confidence.value,
                "implements_greylisting": verdict.implements_greylisting,
            },
        )

        return GreylistResult(
            domain=canonical,
            port=port,
            attempts=results,
            analysis=verdict,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def attempt(self, domain: str, port: int, number: int) -> GreylistAttempt:
        """Open one connection, capture the greeting and release the socket."""
        timestamp = datetime.now(timezone.utc).isoformat()
        start_time = time.perf_counter()

        def finish(**fields) -> GreylistAttempt:
            elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
            return GreylistAttempt(
                attempt_number=number,
                timestamp=timestamp,
                elapsed_ms=elapsed_ms,
                **fields,
            )

        transport: Optional[LineTransport] = None
        try:
            async with asyncio.timeout(self._config.connect_timeout_seconds):
                transport = await self._connect(domain, port, None)
                line = await self._read_greeting(transport)

            if line is None:
                return finish(connected=False, failure_reason="Connection closed without response")

            code = line[:3]
            if code not in CONNECTED_CODES:
                return finish(
                    connected=False,
                    response_code=code,
                    response_line=line,
                    failure_reason=f"Unexpected response code {code}",
                )

            await self._send_quit(transport, domain)
            return finish(connected=True, response_code=code, response_line=line)

        except TimeoutError:
            return finish(connected=False, failure_reason="Connection timeout")
        except ProtocolError as e:
            return finish(connected=False, failure_reason=e.message)
        except OSError as e:
            return finish(connected=False, failure_reason=e.strerror or str(e) or "Connection failed")
        finally:
            if transport is not None:
                await transport.close()

    async def _read_greeting(self, transport: LineTransport) -> Optional[str]:
        """Return the first line starting with a reply code, or None at end of stream."""
        for _ in range(MAX_REPLY_LINES):
            raw = await transport.readline()
            if not raw:
                return None
            line = raw.decode("utf-8", errors="replace").strip()
            if CODE_LINE_PATTERN.match(line):
                return line
        raise ProtocolError(
            code="no_reply_code",
            message="No SMTP reply code received",
        )

    async def _send_quit(self, transport: LineTransport, domain: str) -> None:
        try:
            await transport.write(b"QUIT\r\n")
            await asyncio.sleep(self._config.quit_grace_seconds)
        except OSError as e:
            self._log(
                LogLevel.DEBUG,
                f"QUIT to {domain} failed",
                {"error": str(e)},
            )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
