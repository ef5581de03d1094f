"""
Property-based tests for the Greylist Detector.

Connections are scripted and the inter-attempt sleep is recorded instead of
awaited, so every test runs in milliseconds.
"""

import asyncio
import io
import ssl
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from diagnostic_probes.config import GreylistConfig
from diagnostic_probes.enums import Confidence, LogLevel
from diagnostic_probes.exceptions import ValidationError
from diagnostic_probes.greylist import GreylistDetector, analyze_attempts
from diagnostic_probes.models import GreylistAttempt
from diagnostic_probes.probe_logger import ProbeLogger
from diagnostic_probes.smtp_transport import LineTransport, TLSSession


class GreetingTransport(LineTransport):
    """Serves a fixed list of greeting lines, optionally hanging afterwards."""

    def __init__(self, lines: list[str], hang: bool = False, events: Optional[list] = None) -> None:
        self._lines = [line.encode("utf-8") + b"\r\n" for line in lines]
        self._hang = hang
        self._events = events
        self.writes: list[bytes] = []
        self.closed = False

    async def readline(self) -> bytes:
        if self._lines:
            return self._lines.pop(0)
        if self._hang:
            await asyncio.Event().wait()
        return b""

    async def write(self, data: bytes) -> None:
        self.writes.append(data)

    async def start_tls(self, context: ssl.SSLContext, server_hostname: str) -> TLSSession:
        raise NotImplementedError

    def tls_session(self) -> Optional[TLSSession]:
        return None

    async def close(self) -> None:
        self.closed = True
        if self._events is not None:
            self._events.append("close")


class QuitRejectingTransport(GreetingTransport):
    """Serves a greeting but drops the connection when the client writes."""

    async def write(self, data: bytes) -> None:
        self.writes.append(data)
        raise BrokenPipeError(32, "Broken pipe")


class SequenceConnect:
    """Hands out one scripted outcome per connection attempt."""

    def __init__(self, outcomes: list, events: Optional[list] = None) -> None:
        self._outcomes = list(outcomes)
        self._events = events
        self.transports: list[GreetingTransport] = []

    async def __call__(self, host: str, port: int, ssl_context):
        if self._events is not None:
            self._events.append("connect")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        transport = outcome if isinstance(outcome, GreetingTransport) else GreetingTransport(
            [outcome], events=self._events
        )
        self.transports.append(transport)
        return transport


class RecordingSleep:
    def __init__(self, events: Optional[list] = None) -> None:
        self.delays: list[float] = []
        self._events = events

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._events is not None:
            self._events.append(f"sleep {seconds:g}")


def make_detector(outcomes, events=None, timeout=10.0):
    connect = SequenceConnect(outcomes, events)
    sleep = RecordingSleep(events)
    config = GreylistConfig(connect_timeout_seconds=timeout, quit_grace_seconds=0)
    return GreylistDetector(config, connect=connect, sleep=sleep), connect, sleep


def attempt(number: int, code: Optional[str], line: Optional[str] = None, seconds: int = 0,
            connected: Optional[bool] = None, failure: Optional[str] = None) -> GreylistAttempt:
    base = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    if connected is None:
        connected = code in ("220", "421", "450", "451")
    return GreylistAttempt(
        attempt_number=number,
        timestamp=(base + timedelta(seconds=seconds)).isoformat(),
        connected=connected,
        elapsed_ms=12.5,
        response_code=code,
        response_line=line if line is not None else (f"{code} ok" if code else None),
        failure_reason=failure,
    )


class TestGreylistSequenceProperty:
    """
    Tests for attempt sequencing.

    **Property 11: Attempts are strictly sequential and spaced by the delay**
    """

    def test_greylisted_then_accepted(self) -> None:
        detector, connect, sleep = make_detector(
            ["450 4.7.1 Greylisted, please try again", "220 mx.example.com ESMTP"]
        )

        result = asyncio.run(detector.run("mx.example.com", 25, attempts=2, delay_seconds=30))
        data = result.to_dict()

        assert data["implementsGreylisting"] is True
        assert data["analysis"]["confidence"] == "high"
        assert data["analysis"]["initialRejected"] is True
        assert data["analysis"]["subsequentAccepted"] is True
        assert sleep.delays == [30.0]
        assert [a["attemptNumber"] for a in data["attempts"]] == [1, 2]
        assert all(t.writes == [b"QUIT\r\n"] for t in connect.transports)
        assert all(t.closed for t in connect.transports)

    def test_permanent_rejection(self) -> None:
        detector, _, _ = make_detector(["550 No service", "550 No service"])

        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))

        assert result.analysis.confidence == Confidence.NONE
        assert result.analysis.implements_greylisting is False
        for a in result.attempts:
            assert a.connected is False
            assert a.response_code == "550"
            assert a.failure_reason == "Unexpected response code 550"

    @given(count=st.integers(min_value=2, max_value=5), delay=st.integers(min_value=1, max_value=300))
    @settings(max_examples=25, deadline=None)
    def test_connections_never_overlap(self, count: int, delay: int) -> None:
        """
        Property 11: Strict sequencing.

        *For any* attempt count and delay, every connection SHALL be closed
        before the delay that precedes the next connection, and exactly
        count - 1 delays SHALL be observed.
        """
        events: list[str] = []
        detector, _, sleep = make_detector(["220 ready"] * count, events=events)

        result = asyncio.run(detector.run("mx.example.com", attempts=count, delay_seconds=delay))

        expected = ["connect", "close"]
        for _ in range(count - 1):
            expected += [f"sleep {delay:g}", "connect", "close"]
        assert events == expected
        assert sleep.delays == [float(delay)] * (count - 1)
        assert len(result.attempts) == count

    def test_banner_lines_before_code(self) -> None:
        transport = GreetingTransport(["Welcome to the mail service", "", "220 mx ready"])
        detector, _, _ = make_detector([transport, "220 mx ready"])

        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))

        assert result.attempts[0].response_code == "220"
        assert result.attempts[0].response_line == "220 mx ready"


class TestAttemptFailures:
    def test_connection_timeout(self) -> None:
        detector, connect, _ = make_detector(
            [GreetingTransport([], hang=True), GreetingTransport([], hang=True)], timeout=0.05
        )

        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))

        assert [a.failure_reason for a in result.attempts] == ["Connection timeout"] * 2
        assert all(t.closed for t in connect.transports)

    def test_closed_without_response(self) -> None:
        detector, _, _ = make_detector([GreetingTransport([]), "220 ok"])
        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))
        assert result.attempts[0].failure_reason == "Connection closed without response"
        assert result.attempts[1].connected is True

    def test_connection_refused(self) -> None:
        detector, _, _ = make_detector([
            ConnectionRefusedError(111, "Connection refused"),
            OSError("No route to host"),
        ])
        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))

        assert result.attempts[0].failure_reason == "Connection refused"
        assert result.attempts[1].failure_reason == "No route to host"
        assert result.analysis.confidence == Confidence.NONE

    @pytest.mark.parametrize(
        "greeting,code",
        [
            ("220 mx.example.com ESMTP", "220"),
            ("450 4.7.1 Greylisted, please retry", "450"),
        ],
    )
    def test_failed_quit_keeps_outcome(self, greeting: str, code: str) -> None:
        logger = ProbeLogger(output_stream=io.StringIO(), min_level=LogLevel.DEBUG)
        transports = [QuitRejectingTransport([greeting]), QuitRejectingTransport([greeting])]
        connect = SequenceConnect(transports)
        config = GreylistConfig(quit_grace_seconds=0)
        detector = GreylistDetector(config, connect=connect, sleep=RecordingSleep(), logger=logger)

        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))

        for recorded in result.attempts:
            assert recorded.connected is True
            assert recorded.response_code == code
            assert recorded.response_line == greeting
            assert recorded.failure_reason is None
        assert all(t.writes == [b"QUIT\r\n"] and t.closed for t in transports)
        assert [e.message for e in logger.entries if e.message.startswith("QUIT")] == [
            "QUIT to mx.example.com failed"
        ] * 2

    def test_attempt_serializes_without_absent_fields(self) -> None:
        detector, _, _ = make_detector([GreetingTransport([]), GreetingTransport([])])
        result = asyncio.run(detector.run("mx.example.com", attempts=2, delay_seconds=1))
        data = result.attempts[0].to_dict()
        assert "responseCode" not in data
        assert "responseLine" not in data
        assert data["connected"] is False


class TestGreylistValidation:
    @pytest.mark.parametrize("attempts", [1, 6, "many", 2.5])
    def test_attempt_range(self, attempts) -> None:
        detector, _, _ = make_detector([])
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(detector.run("mx.example.com", attempts=attempts))
        assert exc_info.value.message == "Attempts must be between 2 and 5"

    @pytest.mark.parametrize("delay", [0, 0.5, 301, "soon"])
    def test_delay_range(self, delay) -> None:
        detector, _, _ = make_detector([])
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(detector.run("mx.example.com", delay_seconds=delay))
        assert exc_info.value.message == "Delay must be between 1 and 300 seconds"

    def test_invalid_domain(self) -> None:
        detector, _, _ = make_detector([])
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(detector.run("mx..example.com"))
        assert exc_info.value.message == "Invalid domain format"


class TestGreylistAnalysisProperty:
    """
    Tests for attempt classification.

    **Property 12: Verdicts depend only on the first and last attempts**
    """

    def test_greylist_wording_is_high_confidence(self) -> None:
        verdict = analyze_attempts([
            attempt(1, "450", "450 4.2.0 Greylisted for 5 minutes"),
            attempt(2, "220", seconds=61),
        ])
        assert verdict.confidence == Confidence.HIGH
        assert verdict.typical_delay_seconds == 61
        assert verdict.implements_greylisting

    def test_temporary_code_is_medium_confidence(self) -> None:
        verdict = analyze_attempts([
            attempt(1, "451", "451 Please wait"),
            attempt(2, "220", seconds=30),
        ])
        assert verdict.confidence == Confidence.MEDIUM
        assert verdict.typical_delay_seconds == 30

    def test_repeated_temporary_rejection_still_counts_as_accepted(self) -> None:
        # a connected 450 without failure reason counts as accepted
        verdict = analyze_attempts([
            attempt(1, "450", "450 Busy"),
            attempt(2, "450", "450 Busy", seconds=10),
        ])
        assert verdict.subsequent_accepted is True
        assert verdict.confidence == Confidence.MEDIUM

    def test_service_unavailable_then_accepted_is_low(self) -> None:
        verdict = analyze_attempts([
            attempt(1, "421", "421 Service not available"),
            attempt(2, "220", seconds=5),
        ])
        assert verdict.confidence == Confidence.LOW
        assert verdict.implements_greylisting

    def test_mixed_codes_without_initial_rejection(self) -> None:
        verdict = analyze_attempts([
            attempt(1, "550", "550 Go away", connected=False, failure="Unexpected response code 550"),
            attempt(2, "220", seconds=5),
        ])
        assert verdict.confidence == Confidence.LOW
        assert verdict.initial_rejected is False
        assert verdict.implements_greylisting is False
        assert verdict.typical_delay_seconds is None

    @pytest.mark.parametrize("count", [0, 1])
    def test_too_few_attempts(self, count: int) -> None:
        verdict = analyze_attempts([attempt(1, "450", "450 greylisted")][:count])
        assert verdict.confidence == Confidence.NONE
        assert not verdict.initial_rejected
        assert not verdict.subsequent_accepted

    @given(codes=st.lists(st.sampled_from(["220", "250", "554"]), min_size=2, max_size=5))
    @settings(max_examples=100)
    def test_no_initial_rejection_never_greylisting(self, codes: list[str]) -> None:
        """
        Property 12: Greylisting requires an initial temporary rejection.

        *For any* sequence whose first greeting is not a temporary rejection
        and carries no rejection wording, the verdict SHALL NOT report
        greylisting.
        """
        attempts = [attempt(i + 1, code, f"{code} hello", seconds=i * 10) for i, code in enumerate(codes)]
        verdict = analyze_attempts(attempts)

        assert verdict.initial_rejected is False
        assert verdict.implements_greylisting is False
        if len(set(codes)) == 1:
            assert verdict.confidence == Confidence.NONE
        else:
            assert verdict.confidence == Confidence.LOW
