"""Turn discovery link environment variables into a service map.

Key grammar, for a link whose env prefix is ``WEB``::

    WEB_<INSTANCE>_PORT_<N>_<TCP|UDP>_<ADDR|PORT>

- the prefix is the link name upper-cased with ``-`` as ``_``; when several
  links match, the longest prefix wins
- ``<N>`` is the exposed port, ``<INSTANCE>`` is ``[A-Z0-9]+``
- ``ADDR`` carries the instance host, ``PORT`` the instance port
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping

from .discovery import RawMetadata
from .models import Endpoint, ServiceMap

PORT_INDEX_RE = re.compile(r"PORT_(\d+)_(?:TCP|UDP)_")
FIELD_RE = re.compile(r"PORT_\d+_(?:TCP|UDP)_(ADDR|PORT)$")


@dataclass(frozen=True)
class ParsedKey:
    link: str
    port: str
    instance: str
    field: str  # "host" | "port"


def env_prefix(link: str) -> str:
    return link.upper().replace("-", "_")


def link_prefixes(links: Iterable[str]) -> dict[str, str]:
    """Map each link name to its env prefix."""
    return {link: env_prefix(link) for link in links}


def match_link(prefixes: Mapping[str, str], key: str) -> str | None:
    best: str | None = None
    best_len = -1
    for link, prefix in prefixes.items():
        if key.startswith(prefix + "_") and len(prefix) > best_len:
            best, best_len = link, len(prefix)
    return best


def parse_key(prefixes: Mapping[str, str], key: str) -> ParsedKey | None:
    """Parse one env key; None when it is not an instance port variable."""
    link = match_link(prefixes, key)
    if link is None:
        return None

    m = PORT_INDEX_RE.search(key)
    if not m:
        return None
    port = m.group(1)

    inst = re.match(rf"^{re.escape(prefixes[link])}_([A-Z0-9]+)_PORT_", key)
    if not inst:
        return None

    f = FIELD_RE.search(key)
    if not f:
        return None
    return ParsedKey(link=link, port=port, instance=inst.group(1), field="host" if f.group(1) == "ADDR" else "port")


def _to_port(value: str) -> int | None:
    try:
        return int(value.strip(), 10)
    except ValueError:
        return None


def resolve(raw: RawMetadata) -> ServiceMap:
    prefixes = link_prefixes(raw.links)
    acc: dict[str, dict[str, dict[str, dict[str, object]]]] = {}

    for key, value in raw.envvars:
        parsed = parse_key(prefixes, key)
        if parsed is None:
            continue
        slot = acc.setdefault(parsed.link, {}).setdefault(parsed.port, {}).setdefault(parsed.instance, {})
        if parsed.field == "host":
            slot["host"] = value
        else:
            port = _to_port(value)
            if port is not None:
                slot["port"] = port

    return {
        link: {
            port: {inst: Endpoint(**fields) for inst, fields in instances.items()}  # type: ignore[arg-type]
            for port, instances in ports.items()
        }
        for link, ports in acc.items()
    }
