"""
Relay endpoint identity.

A [Relay][relayshadow.models.relay.Relay] is built from whatever string a
user, a config file or the analytics store handed us and reduces it to a
canonical ``ws://`` / ``wss://`` URL. That canonical ``url`` is what every
map, query parameter and recommendation keys on, so ``WSS://Nos.lol:443/``
and ``wss://nos.lol`` are the same relay.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import ClassVar

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator


_REPEATED_SLASHES = re.compile(r"/{2,}")

_VALIDATOR = (
    Validator()
    .require_presence_of("scheme", "host")
    .allow_schemes("ws", "wss")
    .check_validity_of("scheme", "host", "port", "path")
)


def _clean_path(path: str | None) -> str | None:
    collapsed = _REPEATED_SLASHES.sub("/", path or "").rstrip("/")
    return collapsed or None


@dataclass(frozen=True, slots=True)
class Relay:
    """A normalized relay URL and its parts.

    Equality and hashing use the derived fields only, never ``raw_url``.

    Attributes:
        url: Canonical URL (lowercase scheme and host, default port and
            trailing slash dropped).
        scheme: ``ws`` or ``wss``.
        host: Lowercase host; IPv6 literals without brackets.
        port: Non-default port, else ``None``.
        path: Path without trailing slash, else ``None``.

    Raises:
        TypeError: ``raw_url`` is not a string.
        ValueError: Not a ws/wss URL, or it carries a query, a fragment or
            a NUL byte.

    Examples:
        ```python
        Relay("WSS://Relay.Damus.io:443/").url  # 'wss://relay.damus.io'
        ```
    """

    raw_url: str = field(repr=False, compare=False)

    url: str = field(init=False)
    scheme: str = field(init=False)
    host: str = field(init=False)
    port: int | None = field(init=False)
    path: str | None = field(init=False)

    _DEFAULT_PORTS: ClassVar[dict[str, int]] = {"ws": 80, "wss": 443}

    def __post_init__(self) -> None:
        raw = self.raw_url
        if not isinstance(raw, str):
            raise TypeError(f"Relay URL must be a string, got {type(raw).__name__}")
        if "\x00" in raw:
            raise ValueError("Relay URL contains a NUL byte")

        uri = uri_reference(raw.strip()).normalize()
        try:
            _VALIDATOR.validate(uri)
        except UnpermittedComponentError:
            raise ValueError(f"Unsupported scheme in {raw!r}: expected ws or wss") from None
        except ValidationError as e:
            raise ValueError(f"Malformed relay URL {raw!r}: {e}") from None
        if uri.query or uri.fragment:
            raise ValueError(f"Relay URL {raw!r} may not carry a query or fragment")

        host = uri.host.strip("[]").lower()
        if not host:
            raise ValueError(f"Relay URL {raw!r} has no host")
        port: int | None = int(uri.port) if uri.port else None
        if port == self._DEFAULT_PORTS[uri.scheme]:
            port = None
        path = _clean_path(uri.path)

        authority = f"[{host}]" if ":" in host else host
        if port is not None:
            authority = f"{authority}:{port}"

        for name, value in (
            ("url", f"{uri.scheme}://{authority}{path or ''}"),
            ("scheme", uri.scheme),
            ("host", host),
            ("port", port),
            ("path", path),
        ):
            object.__setattr__(self, name, value)

    def __str__(self) -> str:
        return self.url


def normalize_relay_url(raw: str) -> str | None:
    """Canonical form of ``raw``, or ``None`` when it is not a usable relay URL."""
    try:
        return Relay(raw).url
    except (ValueError, TypeError):
        return None
