"""Parsing of `weave ps` output.

Each line is whitespace separated: name, MAC address, then zero or more
CIDRs. For the host bridge the name is `weave:expose`.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AttachmentRecord:
    name: str
    mac: str
    cidrs: tuple[str, ...] = ()


def parse_ps_line(line: str) -> AttachmentRecord | None:
    fields = line.split()
    if not fields:
        return None
    name = fields[0]
    mac = fields[1] if len(fields) > 1 else ""
    return AttachmentRecord(name=name, mac=mac, cidrs=tuple(fields[2:]))
