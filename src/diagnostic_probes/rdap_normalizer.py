"""
RDAP response normalization.

Reduces domain, IP network and autnum objects to a common schema. Only the
fields listed here are read; anything missing becomes "Not available".
"""

from typing import Any, Iterator, Optional

from .models import (
    NOT_AVAILABLE,
    AsnRecord,
    DomainRecord,
    IpRecord,
    RdapContact,
)

DOMAIN_CONTACT_ROLES = frozenset({"registrant", "administrative", "technical"})
NETWORK_CONTACT_ROLES = DOMAIN_CONTACT_ROLES | {"abuse"}


def _text(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return NOT_AVAILABLE


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def event_date(payload: dict, action: str) -> str:
    """Date of the first event with the given ``eventAction``."""
    for event in _list(payload.get("events")):
        if isinstance(event, dict) and event.get("eventAction") == action:
            return _text(event.get("eventDate"))
    return NOT_AVAILABLE


def iter_entities(payload: dict) -> Iterator[dict]:
    """Depth-first walk over ``entities``, including nested ones."""
    for entity in _list(payload.get("entities")):
        if isinstance(entity, dict):
            yield entity
            yield from iter_entities(entity)


def _roles(entity: dict) -> list[str]:
    return [r for r in _list(entity.get("roles")) if isinstance(r, str)]


def find_entity(payload: dict, role: str) -> Optional[dict]:
    for entity in iter_entities(payload):
        if role in _roles(entity):
            return entity
    return None


def vcard_property(entity: dict, name: str) -> Optional[str]:
    """
    First value of a jCard property (RFC 7095).

    Structured values (e.g. ``org`` as a list) are joined with spaces.
    """
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return None

    for prop in vcard[1]:
        if not isinstance(prop, list) or len(prop) < 4 or prop[0] != name:
            continue
        value = prop[3]
        if isinstance(value, list):
            value = " ".join(str(v) for v in value if v)
        if isinstance(value, str) and value.strip():
            if name == "tel" and value.startswith("tel:"):
                value = value[4:]
            return value.strip()
    return None


def normalize_contact(entity: dict) -> RdapContact:
    return RdapContact(
        handle=_text(entity.get("handle")),
        roles=_roles(entity),
        name=vcard_property(entity, "fn") or NOT_AVAILABLE,
        organization=vcard_property(entity, "org") or NOT_AVAILABLE,
        email=vcard_property(entity, "email") or NOT_AVAILABLE,
        phone=vcard_property(entity, "tel") or NOT_AVAILABLE,
    )


def collect_contacts(payload: dict, roles: frozenset) -> list[RdapContact]:
    return [
        normalize_contact(entity)
        for entity in iter_entities(payload)
        if roles.intersection(_roles(entity))
    ]


def _status(payload: dict) -> list[str]:
    return [s for s in _list(payload.get("status")) if isinstance(s, str)]


def _registry_handle(payload: dict) -> str:
    registrar = find_entity(payload, "registrar")
    return _text(registrar.get("handle")) if registrar else NOT_AVAILABLE


def normalize_domain(payload: dict) -> DomainRecord:
    registrar = find_entity(payload, "registrar")
    nameservers = []
    for ns in _list(payload.get("nameservers")):
        if isinstance(ns, dict):
            name = ns.get("ldhName") or ns.get("unicodeName")
            if isinstance(name, str) and name:
                nameservers.append(name)

    return DomainRecord(
        domain=_text(payload.get("ldhName") or payload.get("unicodeName")),
        status=_status(payload),
        registrar=(vcard_property(registrar, "fn") if registrar else None) or NOT_AVAILABLE,
        nameservers=nameservers,
        created=event_date(payload, "registration"),
        updated=event_date(payload, "last changed"),
        expires=event_date(payload, "expiration"),
        contacts=collect_contacts(payload, DOMAIN_CONTACT_ROLES),
    )


def network_label(payload: dict) -> str:
    """``prefix/length`` from the cidr0 extension, else ``start - end``."""
    cidrs = _list(payload.get("cidr0_cidrs"))
    if cidrs and isinstance(cidrs[0], dict):
        first = cidrs[0]
        prefix = first.get("v4prefix") or first.get("v6prefix")
        if isinstance(prefix, str) and prefix:
            length = first.get("length")
            return f"{prefix}/{length}" if length is not None else prefix

    start, end = payload.get("startAddress"), payload.get("endAddress")
    if isinstance(start, str) and isinstance(end, str) and start and end:
        return f"{start} - {end}"
    return NOT_AVAILABLE


def normalize_ip(payload: dict) -> IpRecord:
    return IpRecord(
        network=network_label(payload),
        name=_text(payload.get("name")),
        type=_text(payload.get("type")),
        country=_text(payload.get("country")),
        status=_status(payload),
        allocation=event_date(payload, "allocation"),
        last_changed=event_date(payload, "last changed"),
        registry=_registry_handle(payload),
        contacts=collect_contacts(payload, NETWORK_CONTACT_ROLES),
    )


def normalize_asn(payload: dict) -> AsnRecord:
    start = payload.get("startAutnum")
    return AsnRecord(
        asn=_text(start if start is not None else payload.get("handle")),
        name=_text(payload.get("name")),
        country=_text(payload.get("country")),
        type=_text(payload.get("type")),
        status=_status(payload),
        allocation=event_date(payload, "allocation"),
        last_changed=event_date(payload, "last changed"),
        registry=_registry_handle(payload),
        contacts=collect_contacts(payload, NETWORK_CONTACT_ROLES),
    )
