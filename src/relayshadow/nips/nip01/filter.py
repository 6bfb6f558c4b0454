"""NIP-01 subscription filter descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class SubscriptionFilter:
    """A NIP-01 filter sent in a ``REQ`` frame.

    Attributes:
        kinds: Event kinds to match.
        authors: Author public keys to match.
        tags: Single-letter tag filters, e.g. ``{"p": ("<pubkey>",)}``
            serialized as ``"#p"``.
        since: Lower bound on ``created_at`` (inclusive).
        until: Upper bound on ``created_at`` (inclusive).
        limit: Maximum number of stored events to return.

    Examples:
        ```python
        SubscriptionFilter(kinds=(5600,), tags={"p": (pubkey,)}, since=now - 3600).to_dict()
        # {'kinds': [5600], '#p': [pubkey], 'since': ...}
        ```
    """

    kinds: tuple[int, ...] = ()
    authors: tuple[str, ...] = ()
    tags: dict[str, tuple[str, ...]] = field(default_factory=dict)
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        for name in self.tags:
            if len(name) != 1 or not name.isalpha():
                raise ValueError(f"tag filter name must be a single letter, got {name!r}")

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object form, omitting unset constraints."""
        result: dict[str, Any] = {}
        if self.kinds:
            result["kinds"] = list(self.kinds)
        if self.authors:
            result["authors"] = list(self.authors)
        for name, values in self.tags.items():
            result[f"#{name}"] = list(values)
        if self.since is not None:
            result["since"] = self.since
        if self.until is not None:
            result["until"] = self.until
        if self.limit is not None:
            result["limit"] = self.limit
        return result
