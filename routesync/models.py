from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Mapping, Union


def canonical_json(obj: Any) -> str:
    """Stable JSON text: sorted keys, no insignificant whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha1_hex(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class FrontendDeclaration:
    """Operator binding of a routing domain to a backend service port."""

    service_id: str
    service_port: str
    domain: str
    healthcheck: Any = None

    def __post_init__(self) -> None:
        # Own a private copy; callers keep theirs.
        object.__setattr__(self, "healthcheck", copy.deepcopy(self.healthcheck))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FrontendDeclaration":
        if not isinstance(data, Mapping):
            raise ValueError("declaration must be an object")
        service = data.get("service")
        frontend = data.get("frontend")
        if not isinstance(service, Mapping) or not isinstance(frontend, Mapping):
            raise ValueError("declaration needs 'service' and 'frontend' objects")

        sid = service.get("id")
        port = service.get("port")
        domain = frontend.get("domain")
        if not isinstance(sid, str) or not sid:
            raise ValueError("service.id must be a non-empty string")
        # JSON clients send ports as numbers or strings; the service map keys them as strings.
        if isinstance(port, bool) or not isinstance(port, (str, int)) or str(port) == "":
            raise ValueError("service.port must be a string or integer")
        if not isinstance(domain, str) or not domain:
            raise ValueError("frontend.domain must be a non-empty string")

        return cls(service_id=sid, service_port=str(port), domain=domain, healthcheck=frontend.get("healthcheck"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": {"id": self.service_id, "port": self.service_port},
            "frontend": {"domain": self.domain, "healthcheck": copy.deepcopy(self.healthcheck)},
        }

    @property
    def fingerprint(self) -> str:
        return fingerprint(self)


def fingerprint(declaration: FrontendDeclaration) -> str:
    """SHA-1 of the declaration's canonical serialization.

    Depends only on declared content, so the id stays stable while backend
    instances come and go.
    """
    return sha1_hex(canonical_json(declaration.to_dict()))


@dataclass(frozen=True)
class Endpoint:
    host: str | None = None
    port: int | None = None


# service id -> port -> instance id -> endpoint
ServiceMap = dict[str, dict[str, dict[str, Endpoint]]]


@dataclass(frozen=True)
class Server:
    id: str
    host: str | None
    port: int | None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "host": self.host, "port": self.port}


@dataclass(frozen=True)
class ResolvedFrontend:
    id: str
    domain: str
    healthcheck: Any
    servers: tuple[Server, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "healthcheck": self.healthcheck,
            "servers": [s.to_dict() for s in self.servers],
        }


@dataclass(frozen=True)
class Unresolved:
    """Placeholder for a declaration whose service or port is not live."""

    declaration: FrontendDeclaration
    reason: str

    def to_dict(self) -> None:
        # Wire format keeps the position with a null.
        return None


FrontendResult = Union[ResolvedFrontend, Unresolved]
