from __future__ import annotations

from typing import List, NamedTuple, Optional, Tuple

from zkwire.protocol.errors import BadArgumentsError
from zkwire.protocol.validator import validate_path

DEFAULT_PORT = 2181


class Endpoint(NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_endpoint(text: str) -> Endpoint:
    """Parse ``host[:port]``; IPv6 hosts are written in brackets."""
    text = text.strip()
    if not text:
        raise BadArgumentsError("Empty server address")
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep:
            raise BadArgumentsError(f"Unterminated IPv6 address in {text!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
        if rest and not rest.startswith(":"):
            raise BadArgumentsError(f"Invalid server address {text!r}")
    else:
        host, _, port_text = text.partition(":")
    if not host:
        raise BadArgumentsError(f"Missing host in {text!r}")
    if not port_text:
        return Endpoint(host, DEFAULT_PORT)
    try:
        port = int(port_text)
    except ValueError as exc:
        raise BadArgumentsError(f"Invalid port in {text!r}") from exc
    if not (1 <= port <= 65535):
        raise BadArgumentsError(f"Port out of range in {text!r}")
    return Endpoint(host, port)


def parse_connect_string(connect: str) -> Tuple[List[Endpoint], Optional[str]]:
    """
    Split ``host:port,host:port/chroot`` into endpoints and an optional chroot.

    A chroot of ``/`` is the same as none.
    """
    hosts, slash, chroot = connect.partition("/")
    endpoints = [parse_endpoint(part) for part in hosts.split(",") if part.strip()]
    if not endpoints:
        raise BadArgumentsError(f"No servers in connect string {connect!r}")
    if not slash or chroot == "":
        return endpoints, None
    root = validate_path("/" + chroot)
    return endpoints, root


def expected_version(version: Optional[int]) -> int:
    """Wire form of an optional expected version; -1 matches any version."""
    return -1 if version is None else version


__all__ = ["DEFAULT_PORT", "Endpoint", "parse_endpoint", "parse_connect_string", "expected_version"]
