"""
Connection string (DSN) assembly and parsing.

Format: ``user:pass@tcp(host:port)/dbname[?param=val&...]``.

Building performs no validation or escaping; a malformed field yields a
malformed DSN that the driver rejects when it is opened.
"""

import re
from dataclasses import dataclass, field

from dbaccess.core.config import Config


class InvalidDSNError(ValueError):
    """Raised when a DSN (or one of its parameters) cannot be parsed."""


_DSN_RE = re.compile(
    r"^(?P<user>[^:@]*)(?::(?P<password>.*))?"
    r"@tcp\((?P<host>[^()]*?)(?::(?P<port>\d+))?\)"
    r"/(?P<database>[^?]*)(?:\?(?P<params>.*))?$",
    re.DOTALL,
)

_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DEFAULT_PORT = 3306


@dataclass(frozen=True)
class DSN:
    user: str
    password: str
    host: str
    port: int
    database: str
    params: dict[str, str] = field(default_factory=dict)


def build_parameters(config: Config) -> str:
    """
    Return the ``?k=v&k=v`` suffix for the optional fields that are set.

    Order is fixed: parseTime, tls, timeout, charset, collation. Empty string
    when nothing is set.
    """
    params: list[str] = []
    if config.parse_time:
        params.append("parseTime=true")
    if config.tls:
        params.append("tls=true")
    if config.timeout:
        params.append(f"timeout={config.timeout}")
    if config.charset:
        params.append(f"charset={config.charset}")
    if config.collation:
        params.append(f"collation={config.collation}")
    if not params:
        return ""
    return "?" + "&".join(params)


def build_dsn(config: Config) -> str:
    return (
        f"{config.user}:{config.password}@tcp({config.host}:{config.port})"
        f"/{config.name}{build_parameters(config)}"
    )


def parse_dsn(dsn: str) -> DSN:
    """Split a DSN back into its parts. Parameters keep their order."""
    m = _DSN_RE.match(dsn)
    if m is None:
        raise InvalidDSNError(f"invalid DSN: {_redact(dsn)}")

    params: dict[str, str] = {}
    raw = m.group("params")
    if raw:
        for pair in raw.split("&"):
            if not pair:
                continue
            key, sep, value = pair.partition("=")
            if not sep or not key:
                raise InvalidDSNError(f"invalid DSN parameter: {pair!r}")
            params[key] = value

    port = m.group("port")
    return DSN(
        user=m.group("user"),
        password=m.group("password") or "",
        host=m.group("host"),
        port=int(port) if port else _DEFAULT_PORT,
        database=m.group("database"),
        params=params,
    )


def parse_duration(text: str) -> float:
    """Parse ``300ms`` / ``5s`` / ``1m30s`` style durations into seconds."""
    s = text.strip()
    if not s:
        raise InvalidDSNError("empty duration")
    if s == "0":
        return 0.0
    pos = 0
    total = 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise InvalidDSNError(f"invalid duration: {text!r}")
    return total


def _redact(dsn: str) -> str:
    """Hide the password part of a DSN for error messages."""
    user, sep, rest = dsn.partition(":")
    at = rest.rfind("@tcp(")
    if at == -1:
        at = rest.rfind("@")
    if not sep or at == -1:
        return dsn
    return f"{user}:***{rest[at:]}"
