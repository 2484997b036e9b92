"""Runtime configuration shared by the client and the server."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Tuple

AUTH_SALT = "fmj0123456"
DEFAULT_SSH_ADDRESS = "127.0.0.1:22"


class CallbackType(enum.IntEnum):
    """Events the connection pool reports to its owner."""

    SSH_FIN = 1
    SSH_RESET = 2


@dataclass
class Config:
    """Settings for one end of the tunnel; a server address makes it a client."""

    port: int = 0
    server_address: str = ""
    key: str = ""
    ssh_address: str = DEFAULT_SSH_ADDRESS
    debug: bool = False

    def role(self) -> str:
        return "client" if self.server_address else "server"


def _split_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address {address!r}")
    return host.strip("[]") or "localhost", int(port)