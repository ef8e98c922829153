from __future__ import annotations

import ipaddress
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _check_cidr(value: str) -> str:
    try:
        ipaddress.ip_interface(value)
    except ValueError as e:
        raise ValueError(f"invalid CIDR {value!r}") from e
    if "/" not in value:
        raise ValueError(f"CIDR {value!r} is missing a prefix length")
    return value


class NodeInfo(BaseModel):
    peer_ips: list[str] = Field(default_factory=list, description="Addresses of the other nodes' routers")
    trusted_subnets: list[str] | None = Field(None, description="Subnets where weave skips encryption")
    node_number: int | None = Field(None, ge=1, le=254, description="Derives the host overlay address 10.81.0.N/16")

    @field_validator("peer_ips")
    @classmethod
    def _peers(cls, v: list[str]) -> list[str]:
        for ip in v:
            ipaddress.ip_address(ip)
        return v

    @field_validator("trusted_subnets")
    @classmethod
    def _subnets(cls, v: list[str] | None) -> list[str] | None:
        if v is not None:
            for cidr in v:
                ipaddress.ip_network(cidr, strict=False)
        return v


class CidrRequest(BaseModel):
    cidr: str = Field(..., description="Overlay address, e.g. 10.81.128.7/16")

    @field_validator("cidr")
    @classmethod
    def _cidr(cls, v: str) -> str:
        return _check_cidr(v)


class ContainerRemovedRequest(BaseModel):
    id: str
    attributes: dict[str, str] = Field(default_factory=dict)


class ContainerOptsRequest(BaseModel):
    opts: dict[str, Any]
    overlay: bool = Field(True, description="Also reserve an overlay address and label the container")
