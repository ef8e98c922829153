from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from .settings import settings


class IpamError(Exception):
    """The allocator rejected a request."""


class IpamUnavailable(IpamError):
    """The allocator could not be reached."""


@dataclass(frozen=True)
class PoolHandle:
    name: str
    subnet: str
    iprange: str | None = None


class IpamClient:
    """Client for the address allocator.

    Speaks the libnetwork remote IPAM driver protocol: JSON POSTs to
    /IpamDriver.<Method>, errors reported in an "Err" field.
    """

    def __init__(
        self,
        base_url: str = settings.ipam_url,
        timeout_s: float = settings.ipam_timeout_s,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/IpamDriver.{method}"
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
                resp = client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise IpamUnavailable(f"{method}: {type(e).__name__}: {e}") from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            raise IpamError(f"{method}: unexpected response {data!r}")
        if data.get("Err"):
            raise IpamError(f"{method}: {data['Err']}")
        if resp.status_code >= 400:
            raise IpamError(f"{method}: HTTP {resp.status_code}")
        return data

    def reserve_pool(self, name: str, subnet: str, iprange: str | None = None) -> PoolHandle:
        payload: dict[str, Any] = {
            "Pool": subnet,
            "Options": {"network": name},
            "V6": False,
        }
        if iprange:
            payload["SubPool"] = iprange
        data = self._call("RequestPool", payload)
        return PoolHandle(name=data.get("PoolID") or name, subnet=data.get("Pool") or subnet, iprange=iprange)

    def reserve_address(self, pool: str) -> str:
        data = self._call("RequestAddress", {"PoolID": pool})
        address = data.get("Address")
        if not address:
            raise IpamError(f"RequestAddress: no address in response for pool {pool}")
        return address

    def release_address(self, pool: str, address: str) -> None:
        self._call("ReleaseAddress", {"PoolID": pool, "Address": address})
