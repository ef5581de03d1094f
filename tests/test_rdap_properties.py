"""
Property-based tests for the RDAP bootstrap, normalizer and client modules.

The client is exercised against httpx.MockTransport serving canned IANA
bootstrap files and registry answers.
"""

import asyncio
import io
import ipaddress
import json
from urllib.parse import unquote

import httpx
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from diagnostic_probes.config import IANA_BOOTSTRAP_URLS, RdapConfig
from diagnostic_probes.enums import BootstrapRegistry, RdapErrorCode, RdapQueryKind
from diagnostic_probes.exceptions import NoServiceError, UpstreamError, ValidationError
from diagnostic_probes.models import NOT_AVAILABLE
from diagnostic_probes.orchestrator import ProbeOrchestrator
from diagnostic_probes.probe_logger import ProbeLogger
from diagnostic_probes.rdap_bootstrap import (
    BootstrapService,
    match_asn,
    match_ip,
    parse_registry,
    registry_for_ip,
    select_service,
)
from diagnostic_probes.rdap_client import RdapClient
from diagnostic_probes.rdap_normalizer import (
    network_label,
    normalize_asn,
    normalize_domain,
    normalize_ip,
    vcard_property,
)

DNS_BOOTSTRAP = {
    "version": "1.0",
    "services": [
        [["net", "com"], ["https://rdap.verisign.com/com/v1/"]],
        [["org"], ["https://rdap.publicinterestregistry.org/rdap/"]],
    ],
}

IPV4_BOOTSTRAP = {
    "services": [
        [["8.0.0.0/8"], ["https://rdap.arin.net/registry/"]],
        [["8.8.0.0/16", "bogus"], ["https://rdap.example-nir.net/"]],
        [["193.0.0.0/8"], ["https://rdap.db.ripe.net/"]],
    ],
}

IPV6_BOOTSTRAP = {
    "services": [
        [["2001:4800::/23"], ["https://rdap.arin.net/registry/"]],
        [["2001:4000::/23"], ["https://rdap.db.ripe.net/"]],
    ],
}

ASN_BOOTSTRAP = {
    "services": [
        [["1-1876", "15169"], ["https://rdap.arin.net/registry/"]],
        [["3154-3353"], ["https://rdap.db.ripe.net/"]],
    ],
}

BOOTSTRAP_DOCUMENTS = {
    IANA_BOOTSTRAP_URLS["domain"]: DNS_BOOTSTRAP,
    IANA_BOOTSTRAP_URLS["ipv4"]: IPV4_BOOTSTRAP,
    IANA_BOOTSTRAP_URLS["ipv6"]: IPV6_BOOTSTRAP,
    IANA_BOOTSTRAP_URLS["asn"]: ASN_BOOTSTRAP,
}


def vcard(*properties) -> list:
    return ["vcard", [["version", {}, "text", "4.0"], *properties]]


DOMAIN_PAYLOAD = {
    "objectClassName": "domain",
    "ldhName": "EXAMPLE.COM",
    "status": ["client delete prohibited", "client transfer prohibited"],
    "events": [
        {"eventAction": "registration", "eventDate": "1995-08-14T04:00:00Z"},
        {"eventAction": "expiration", "eventDate": "2026-08-13T04:00:00Z"},
        {"eventAction": "last changed", "eventDate": "2025-08-14T07:01:34Z"},
    ],
    "nameservers": [{"ldhName": "A.IANA-SERVERS.NET"}, {"ldhName": "B.IANA-SERVERS.NET"}],
    "entities": [
        {
            "handle": "376",
            "roles": ["registrar"],
            "vcardArray": vcard(["fn", {}, "text", "RESERVED-Internet Assigned Numbers Authority"]),
            "entities": [
                {
                    "roles": ["abuse"],
                    "vcardArray": vcard(["tel", {"type": "voice"}, "uri", "tel:+1.3103015800"]),
                },
            ],
        },
    ],
}


def make_transport(responses=None, requests=None, transport_class=httpx.MockTransport):
    """
    MockTransport serving the bootstrap files plus ``responses``.

    ``responses`` maps a URL to a JSON document or a prepared httpx.Response.
    """
    responses = responses or {}

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        url = unquote(str(request.url))
        if url in responses:
            answer = responses[url]
            if isinstance(answer, httpx.Response):
                return answer
            return httpx.Response(200, json=answer)
        if url in BOOTSTRAP_DOCUMENTS:
            return httpx.Response(200, json=BOOTSTRAP_DOCUMENTS[url])
        return httpx.Response(404, json={"errorCode": 404})

    return transport_class(handler)


class SessionCountingTransport(httpx.MockTransport):
    """MockTransport that counts how many HTTP sessions were closed over it."""

    def __init__(self, handler) -> None:
        super().__init__(handler)
        self.closed_sessions = 0

    async def aclose(self) -> None:
        self.closed_sessions += 1


async def _lookup(client: RdapClient, kind: str, query):
    return await getattr(client, f"lookup_{kind}")(query)


def lookup(kind: str, query, responses=None, requests=None, logger=None, config=None):
    client = RdapClient(config, transport=make_transport(responses, requests), logger=logger)
    return asyncio.run(_lookup(client, kind, query))


class TestBootstrapMatchingProperty:
    """
    Tests for bootstrap service selection.

    **Property 13: The most specific bootstrap entry wins**
    """

    def test_domain_matched_by_tld(self) -> None:
        services = parse_registry(DNS_BOOTSTRAP)
        assert select_service(RdapQueryKind.DOMAIN, services, "example.COM") == (
            "https://rdap.verisign.com/com/v1/"
        )

    def test_unknown_tld(self) -> None:
        services = parse_registry(DNS_BOOTSTRAP)
        with pytest.raises(NoServiceError) as exc_info:
            select_service(RdapQueryKind.DOMAIN, services, "example.invalid")
        assert exc_info.value.message == "No RDAP service found for this domain"

    def test_longest_prefix_wins(self) -> None:
        services = parse_registry(IPV4_BOOTSTRAP)
        assert match_ip(services, "8.8.8.8") == "https://rdap.example-nir.net/"
        assert match_ip(services, "8.9.1.1") == "https://rdap.arin.net/registry/"
        assert match_ip(services, "10.0.0.1") is None

    def test_ipv6_never_matches_ipv4_blocks(self) -> None:
        assert match_ip(parse_registry(IPV4_BOOTSTRAP), "2001:4860::1") is None
        assert match_ip(parse_registry(IPV6_BOOTSTRAP), "2001:4860::1") == (
            "https://rdap.arin.net/registry/"
        )

    @given(prefix=st.integers(min_value=8, max_value=30), host=st.integers(min_value=0, max_value=2**24 - 1))
    @settings(max_examples=100)
    def test_more_specific_network_always_preferred(self, prefix: int, host: int) -> None:
        """
        Property 13: Longest prefix match.

        *For any* address inside 10.0.0.0/8 and any nested network covering
        it, the nested network's service SHALL be chosen regardless of the
        order of the entries.
        """
        address = ipaddress.ip_address(0x0A000000 + host)
        nested = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
        broad = BootstrapService(["10.0.0.0/8"], ["https://broad.example/"])
        narrow = BootstrapService([str(nested)], ["https://narrow.example/"])

        expected = "https://narrow.example/" if prefix > 8 else "https://broad.example/"
        assert match_ip([broad, narrow], str(address)) == expected
        assert match_ip([narrow, broad], str(address)) in (expected, "https://narrow.example/")

    @pytest.mark.parametrize(
        "asn,expected",
        [
            (1, "https://rdap.arin.net/registry/"),
            (1876, "https://rdap.arin.net/registry/"),
            (15169, "https://rdap.arin.net/registry/"),
            (3200, "https://rdap.db.ripe.net/"),
            (15170, None),
        ],
    )
    def test_asn_ranges(self, asn: int, expected) -> None:
        assert match_asn(parse_registry(ASN_BOOTSTRAP), asn) == expected

    def test_registry_without_services_rejected(self) -> None:
        with pytest.raises(UpstreamError) as exc_info:
            parse_registry({"version": "1.0"})
        assert exc_info.value.code == RdapErrorCode.PARSE_ERROR.value

    def test_malformed_entries_skipped(self) -> None:
        services = parse_registry({"services": [["com"], [["org"], []], "junk", [["net"], ["https://n/"]]]})
        assert services == [BootstrapService(["net"], ["https://n/"])]

    def test_registry_for_ip(self) -> None:
        assert registry_for_ip("192.0.2.1") == BootstrapRegistry.IPV4
        assert registry_for_ip("2001:db8::1") == BootstrapRegistry.IPV6


class TestNormalizerProperty:
    """
    Tests for RDAP normalization.

    **Property 14: Missing fields become "Not available", never errors**
    """

    def test_domain_fields(self) -> None:
        record = normalize_domain(DOMAIN_PAYLOAD)

        assert record.domain == "EXAMPLE.COM"
        assert record.registrar == "RESERVED-Internet Assigned Numbers Authority"
        assert record.created == "1995-08-14T04:00:00Z"
        assert record.updated == "2025-08-14T07:01:34Z"
        assert record.expires == "2026-08-13T04:00:00Z"
        assert record.nameservers == ["A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET"]
        assert record.status == ["client delete prohibited", "client transfer prohibited"]

    def test_domain_without_events(self) -> None:
        record = normalize_domain({"ldhName": "example.org"})
        assert (record.created, record.updated, record.expires) == (NOT_AVAILABLE,) * 3
        assert record.registrar == NOT_AVAILABLE
        assert record.contacts == []

    @given(payload=st.dictionaries(
        st.sampled_from(["ldhName", "name", "events", "entities", "status", "country", "handle",
                         "startAutnum", "cidr0_cidrs", "startAddress", "nameservers"]),
        st.one_of(st.none(), st.integers(), st.text(max_size=5), st.lists(st.integers(), max_size=3)),
    ))
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_arbitrary_payloads_never_raise(self, payload: dict) -> None:
        """
        Property 14: Normalization is total.

        *For any* object with arbitrarily typed fields, every normalizer SHALL
        return a record without raising.
        """
        for normalize in (normalize_domain, normalize_ip, normalize_asn):
            data = normalize(payload).to_dict()
            json.dumps(data)

    def test_nested_contacts_collected(self) -> None:
        payload = {
            "entities": [
                {
                    "handle": "REG-1",
                    "roles": ["registrant"],
                    "vcardArray": vcard(
                        ["fn", {}, "text", "Jane Admin"],
                        ["org", {}, "text", ["Example", "Inc"]],
                        ["email", {}, "text", "jane@example.com"],
                    ),
                    "entities": [{"handle": "ABUSE-1", "roles": ["abuse"]}],
                },
            ],
        }
        contacts = normalize_ip(payload).contacts

        assert [c.handle for c in contacts] == ["REG-1", "ABUSE-1"]
        assert contacts[0].name == "Jane Admin"
        assert contacts[0].organization == "Example Inc"
        assert contacts[0].email == "jane@example.com"
        assert contacts[0].phone == NOT_AVAILABLE
        assert contacts[1].name == NOT_AVAILABLE

    def test_phone_tel_prefix_stripped(self) -> None:
        abuse = DOMAIN_PAYLOAD["entities"][0]["entities"][0]
        assert vcard_property(abuse, "tel") == "+1.3103015800"

    def test_network_label_prefers_cidr(self) -> None:
        assert network_label({
            "cidr0_cidrs": [{"v4prefix": "8.8.8.0", "length": 24}],
            "startAddress": "8.8.8.0",
            "endAddress": "8.8.8.255",
        }) == "8.8.8.0/24"
        assert network_label({"startAddress": "8.8.8.0", "endAddress": "8.8.8.255"}) == "8.8.8.0 - 8.8.8.255"
        assert network_label({}) == NOT_AVAILABLE

    def test_ip_registry_from_registrar_handle(self) -> None:
        record = normalize_ip({
            "name": "GOGL",
            "type": "DIRECT ALLOCATION",
            "entities": [{"handle": "ARIN", "roles": ["registrar"]}],
            "events": [{"eventAction": "allocation", "eventDate": "2014-03-14"}],
        })
        assert record.registry == "ARIN"
        assert record.allocation == "2014-03-14"
        assert record.country == NOT_AVAILABLE

    def test_asn_value(self) -> None:
        assert normalize_asn({"startAutnum": 15169, "handle": "AS15169"}).asn == "15169"
        assert normalize_asn({"handle": "AS15169"}).asn == "AS15169"
        assert normalize_asn({}).asn == NOT_AVAILABLE


class TestRdapClientProperty:
    """
    Tests for the RDAP client.

    **Property 15: Registry queries go only to bootstrap-selected services**
    """

    def test_domain_lookup(self) -> None:
        requests = []
        url = "https://rdap.verisign.com/com/v1/domain/example.com"
        result = lookup("domain", " Example.COM ", {url: DOMAIN_PAYLOAD}, requests)
        data = result.to_dict()

        assert data["domain"] == "example.com"
        assert data["serviceUrl"] == "https://rdap.verisign.com/com/v1/"
        assert data["data"]["registrar"] == "RESERVED-Internet Assigned Numbers Authority"
        assert data["raw"] == DOMAIN_PAYLOAD
        assert [str(r.url) for r in requests] == [IANA_BOOTSTRAP_URLS["domain"], url]
        assert requests[1].headers["User-Agent"] == RdapConfig().user_agent
        assert "application/rdap+json" in requests[1].headers["Accept"]

    def test_no_service_after_single_request(self) -> None:
        requests = []
        with pytest.raises(NoServiceError) as exc_info:
            lookup("domain", "example.invalid", requests=requests)
        assert exc_info.value.http_status == 404
        assert len(requests) == 1

    @pytest.mark.parametrize("value", ["localhost", "", None, 42])
    def test_domain_requires_dot(self, value) -> None:
        with pytest.raises(ValidationError) as exc_info:
            lookup("domain", value)
        assert exc_info.value.message == "Valid domain name required"

    def test_ip_lookup_uses_family_registry(self) -> None:
        requests = []
        url = "https://rdap.db.ripe.net/ip/2001:4000::1"
        result = lookup("ip", "2001:4000:0::1", {url: {"name": "RIPE-NET"}}, requests)

        assert str(requests[0].url) == IANA_BOOTSTRAP_URLS["ipv6"]
        assert result.query == "2001:4000::1"
        assert result.normalized.name == "RIPE-NET"

    def test_ip_required(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            lookup("ip", "")
        assert exc_info.value.message == "IP address required"

    def test_asn_lookup(self) -> None:
        url = "https://rdap.arin.net/registry/autnum/15169"
        result = lookup("asn", "AS15169", {url: {"startAutnum": 15169, "name": "GOOGLE"}})
        data = result.to_dict()

        assert data["asn"] == "AS15169"
        assert data["data"]["asn"] == "15169"
        assert data["data"]["name"] == "GOOGLE"

    def test_asn_failure_logged_and_raised(self) -> None:
        logger = ProbeLogger(output_stream=io.StringIO())
        url = "https://rdap.arin.net/registry/autnum/15169"
        with pytest.raises(UpstreamError):
            lookup("asn", "15169", {url: httpx.Response(500)}, logger=logger)
        assert [e.message for e in logger.entries if e.level.value == "warn"] == ["RDAP ASN lookup failed"]

    def test_service_error_status(self) -> None:
        url = "https://rdap.verisign.com/com/v1/domain/example.com"
        with pytest.raises(UpstreamError) as exc_info:
            lookup("domain", "example.com", {url: httpx.Response(500)})
        assert exc_info.value.message == "RDAP query failed: 500 Internal Server Error"
        assert exc_info.value.upstream_status == 500

    def test_bootstrap_failure(self) -> None:
        with pytest.raises(UpstreamError) as exc_info:
            lookup("domain", "example.com", {IANA_BOOTSTRAP_URLS["domain"]: httpx.Response(503)})
        assert exc_info.value.code == RdapErrorCode.BOOTSTRAP_FAILED.value
        assert exc_info.value.message == (
            "Failed to fetch RDAP bootstrap registry: 503 Service Unavailable"
        )

    def test_invalid_json_from_service(self) -> None:
        url = "https://rdap.verisign.com/com/v1/domain/example.com"
        with pytest.raises(UpstreamError) as exc_info:
            lookup("domain", "example.com", {url: httpx.Response(200, content=b"<html>")})
        assert exc_info.value.code == RdapErrorCode.PARSE_ERROR.value
        assert exc_info.value.message.startswith("RDAP query failed: Invalid JSON in response")

    def test_non_object_payload_rejected(self) -> None:
        url = "https://rdap.verisign.com/com/v1/domain/example.com"
        with pytest.raises(UpstreamError) as exc_info:
            lookup("domain", "example.com", {url: ["not", "an", "object"]})
        assert exc_info.value.code == RdapErrorCode.PARSE_ERROR.value

    def test_network_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = RdapClient(RdapConfig(timeout_seconds=2), transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(_lookup(client, "domain", "example.com"))
        assert exc_info.value.message == (
            "Failed to fetch RDAP bootstrap registry: Request timed out after 2s"
        )


class TestSessionScopeProperty:
    """
    Tests for HTTP session lifetime.

    **Property 21: Every lookup opens and releases its own HTTP session**
    """

    @given(count=st.integers(min_value=1, max_value=4))
    @settings(max_examples=10)
    def test_sessions_not_shared_across_requests(self, count: int) -> None:
        """
        Property 21: Session scope.

        *For any* number of lookups served by one long-lived orchestrator,
        each lookup SHALL close its own HTTP session before returning, so
        no connection is reused by a later request.
        """
        domains = [f"site{i}.com" for i in range(count)]
        requests = []
        transport = make_transport(
            {f"https://rdap.verisign.com/com/v1/domain/{d}": {"ldhName": d} for d in domains},
            requests,
            SessionCountingTransport,
        )
        orchestrator = ProbeOrchestrator(rdap_client=RdapClient(transport=transport))

        async def run() -> list[int]:
            closed_after_each = []
            for domain in domains:
                await orchestrator.handle_rdap({"action": "domain-lookup", "domain": domain})
                closed_after_each.append(transport.closed_sessions)
            return closed_after_each

        assert asyncio.run(run()) == list(range(1, count + 1))
        assert len(requests) == 2 * count

    @pytest.mark.parametrize(
        "kind,query,expected",
        [
            ("domain", "example.invalid", NoServiceError),
            ("ip", "203.0.113.9", NoServiceError),
            ("asn", "AS64512", NoServiceError),
        ],
    )
    def test_session_released_on_failure(self, kind: str, query: str, expected) -> None:
        transport = make_transport(transport_class=SessionCountingTransport)
        client = RdapClient(transport=transport)

        with pytest.raises(expected):
            asyncio.run(_lookup(client, kind, query))
        assert transport.closed_sessions == 1
