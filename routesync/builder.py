from __future__ import annotations

import copy
from dataclasses import replace
from typing import Any, Sequence

from .models import (
    FrontendDeclaration,
    FrontendResult,
    ResolvedFrontend,
    Server,
    ServiceMap,
    Unresolved,
    canonical_json,
    fingerprint,
    sha1_hex,
)


def build_one(declaration: FrontendDeclaration, services: ServiceMap) -> FrontendResult:
    ports = services.get(declaration.service_id)
    if ports is None:
        return Unresolved(replace(declaration), reason=f"unknown service '{declaration.service_id}'")
    instances = ports.get(declaration.service_port)
    if instances is None:
        return Unresolved(
            replace(declaration), reason=f"unknown port {declaration.service_port} for service '{declaration.service_id}'"
        )

    # Sorted so the serialized config does not depend on envvar order.
    servers = tuple(Server(id=inst, host=ep.host, port=ep.port) for inst, ep in sorted(instances.items()))
    return ResolvedFrontend(
        id=fingerprint(declaration),
        domain=declaration.domain,
        healthcheck=copy.deepcopy(declaration.healthcheck),
        servers=servers,
    )


def build(declarations: Sequence[FrontendDeclaration], services: ServiceMap) -> tuple[FrontendResult, ...]:
    """One result per declaration, in declaration order."""
    return tuple(build_one(d, services) for d in declarations)


def to_wire(results: Sequence[FrontendResult]) -> list[dict[str, Any] | None]:
    return [r.to_dict() for r in results]


def serialize(results: Sequence[FrontendResult]) -> str:
    return canonical_json(to_wire(results))


def config_fingerprint(results: Sequence[FrontendResult]) -> str:
    return sha1_hex(serialize(results))
