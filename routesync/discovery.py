from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx


class DiscoveryError(Exception):
    pass


class DiscoveryUnavailable(DiscoveryError):
    """The discovery backend could not be reached or answered with an error status."""


class MalformedResponse(DiscoveryError):
    """The discovery backend answered, but not with the expected JSON document."""


@dataclass(frozen=True)
class RawMetadata:
    links: tuple[str, ...]
    envvars: tuple[tuple[str, str], ...]


def parse_payload(data: Any) -> RawMetadata:
    """Validate a decoded discovery document.

    Expected JSON: {"linked_to_service": [{"name": ...}], "calculated_envvars": [{"key": ..., "value": ...}]}.
    """
    if not isinstance(data, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(data).__name__}")

    linked = data.get("linked_to_service")
    envvars = data.get("calculated_envvars")
    if not isinstance(linked, list) or not isinstance(envvars, list):
        raise MalformedResponse("Missing 'linked_to_service' or 'calculated_envvars' list")

    links: list[str] = []
    for item in linked:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            raise MalformedResponse(f"Invalid linked service entry: {item!r}")
        links.append(item["name"])

    pairs: list[tuple[str, str]] = []
    for item in envvars:
        if not isinstance(item, dict) or not isinstance(item.get("key"), str):
            raise MalformedResponse(f"Invalid envvar entry: {item!r}")
        value = item.get("value")
        pairs.append((item["key"], "" if value is None else str(value)))

    return RawMetadata(links=tuple(links), envvars=tuple(pairs))


class DiscoveryClient:
    """Single-shot reader for the platform's service API."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        auth: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not url:
            raise ValueError("Discovery URL is not configured.")
        self.url = url
        self.timeout_s = timeout_s
        self.auth = auth
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth:
            headers["Authorization"] = self.auth
        return headers

    def fetch_raw(self) -> RawMetadata:
        """GET the discovery URL once. No retries; the poll cadence is the retry policy."""
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport, follow_redirects=False) as client:
                resp = client.get(self.url, headers=self._headers())
        except httpx.HTTPError as e:
            raise DiscoveryUnavailable(f"{type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise DiscoveryUnavailable(f"HTTP {resp.status_code} from {self.url}")
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse("Invalid JSON") from e
        return parse_payload(data)
