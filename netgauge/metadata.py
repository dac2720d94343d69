"""
Connection metadata client.

Queries the endpoint's JSON ``/meta`` document first and falls back to the
plain-text ``/cdn-cgi/trace`` document for anything it left out.  All HTTP
work goes through a single ``aiohttp.ClientSession`` managed via the
async-context-manager protocol
(``async with MetadataClient(endpoint) as client: ...``).
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from .constants import COMMON_HEADERS, DEFAULT_METADATA_TIMEOUT, DEFAULT_RETRIES
from .errors import MetadataUnavailable, describe, is_connectivity_error
from .models import Endpoint, NetworkMetadata

LOGGER = logging.getLogger(__name__)

RETRY_BACKOFF = 0.25

# Share of the fetch budget each source may spend, retries included
SOURCE_SHARE = 0.45

# Partial mapping of common Cloudflare colo codes
COLO_CITIES: Dict[str, str] = {
    "SIN": "Singapore",
    "HKG": "Hong Kong",
    "NRT": "Tokyo",
    "LAX": "Los Angeles",
    "SFO": "San Francisco",
    "SEA": "Seattle",
    "ORD": "Chicago",
    "IAD": "Washington DC",
    "EWR": "New York",
    "MIA": "Miami",
    "LHR": "London",
    "AMS": "Amsterdam",
    "FRA": "Frankfurt",
    "CDG": "Paris",
    "SYD": "Sydney",
    "MEL": "Melbourne",
    "CGK": "Jakarta",
    "BOM": "Mumbai",
    "DEL": "Delhi",
}

_REQUIRED = ("ip", "network_name", "asn", "server_location")


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def city_for_colo(colo: Optional[str]) -> Optional[str]:
    """Map a colo code to a city name; unknown codes pass through verbatim."""
    if not colo:
        return None
    return COLO_CITIES.get(colo.upper(), colo)


def ip_version(ip: Optional[str]) -> Optional[str]:
    if not ip:
        return None
    if ":" in ip:
        return "IPv6"
    if "." in ip:
        return "IPv4"
    return None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_trace(body: str) -> NetworkMetadata:
    """Parse the ``key=value`` lines of a trace document."""
    data: Dict[str, str] = {}
    for line in body.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            data[key.strip()] = value.strip()

    ip = _clean(data.get("ip"))
    colo = _clean(data.get("colo"))
    return NetworkMetadata(
        ip=ip,
        connected_via=ip_version(ip),
        server_location=city_for_colo(colo),
        country=_clean(data.get("loc")),
        tls_version=_clean(data.get("tls")),
        http_version=_clean(data.get("http")),
        colo=colo,
    )


def parse_meta(data: Mapping[str, Any]) -> NetworkMetadata:
    """Parse the JSON ``/meta`` document."""
    ip = _clean(data.get("clientIp"))

    colo_raw = data.get("colo")
    if isinstance(colo_raw, Mapping):
        colo = _clean(colo_raw.get("iata"))
        location = _clean(colo_raw.get("city")) or city_for_colo(colo)
    else:
        colo = _clean(colo_raw)
        location = city_for_colo(colo)

    asn = _clean(data.get("asn"))
    if asn and asn.isdigit():
        asn = f"AS{asn}"

    return NetworkMetadata(
        ip=ip,
        connected_via=ip_version(ip),
        server_location=location,
        network_name=_clean(data.get("asOrganization")),
        asn=asn,
        country=_clean(data.get("country")),
        http_version=_clean(data.get("httpProtocol")),
        colo=colo,
    )


def merge_metadata(
    primary: Optional[NetworkMetadata], secondary: Optional[NetworkMetadata]
) -> NetworkMetadata:
    """Field-by-field merge; present *primary* fields always win."""
    if primary is None:
        return secondary or NetworkMetadata()
    if secondary is None:
        return primary
    merged = {
        f.name: getattr(primary, f.name) if getattr(primary, f.name) is not None
        else getattr(secondary, f.name)
        for f in dataclasses.fields(NetworkMetadata)
    }
    return NetworkMetadata(**merged)


def is_complete(meta: Optional[NetworkMetadata]) -> bool:
    return meta is not None and all(getattr(meta, name) for name in _REQUIRED)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class MetadataClient:
    """
    Async context-manager fetching ``NetworkMetadata`` for one endpoint.

    *timeout* bounds the whole ``fetch()``.  Each source gets under half of
    it, split evenly across its attempts, so the trace fallback still runs
    when ``/meta`` hangs.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: float = DEFAULT_METADATA_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.retries = retries
        self.source_budget = timeout * SOURCE_SHARE
        self.request_timeout = self.source_budget / (retries + 1)
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> MetadataClient:
        self._session = aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- Internal helpers ---------------------------------------------------

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "MetadataClient must be used as an async context manager "
                "(async with MetadataClient(endpoint) as client: ...)"
            )
        return self._session

    async def _with_retries(self, fetch, label: str):  # noqa: ANN001
        last_exc: Optional[BaseException] = None
        for attempt in range(self.retries + 1):
            try:
                return await fetch()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
                last_exc = exc
                LOGGER.debug("%s attempt %d failed: %s", label, attempt + 1, describe(exc))
                if attempt < self.retries:
                    await asyncio.sleep(RETRY_BACKOFF * (attempt + 1))
        raise last_exc

    async def _from_source(self, fetch, label: str):  # noqa: ANN001
        return await asyncio.wait_for(self._with_retries(fetch, label), timeout=self.source_budget)

    async def _get_meta(self) -> NetworkMetadata:
        session = self._ensure_session()
        async with session.get(self.endpoint.meta_url) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        if not isinstance(data, Mapping):
            raise ValueError("meta document is not a JSON object")
        return parse_meta(data)

    async def _get_trace(self) -> NetworkMetadata:
        session = self._ensure_session()
        async with session.get(self.endpoint.trace_url) as resp:
            resp.raise_for_status()
            body = await resp.text()
        return parse_trace(body)

    # -- Public methods -----------------------------------------------------

    async def fetch(self) -> NetworkMetadata:
        """
        Return merged metadata.

        Raises ``MetadataUnavailable`` when neither source answered; its
        ``connectivity`` flag is set only if both failures were
        connectivity-class.
        """
        primary: Optional[NetworkMetadata] = None
        primary_exc: Optional[BaseException] = None
        try:
            primary = await self._from_source(self._get_meta, "meta")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            primary_exc = exc

        if is_complete(primary):
            return primary

        try:
            secondary = await self._from_source(self._get_trace, "trace")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            if primary is not None:
                LOGGER.debug("Trace fallback failed, keeping partial meta: %s", describe(exc))
                return primary
            raise MetadataUnavailable(
                f"Metadata unavailable: {describe(primary_exc)}; {describe(exc)}",
                cause=exc,
                connectivity=is_connectivity_error(primary_exc) and is_connectivity_error(exc),
            ) from exc

        return merge_metadata(primary, secondary)
