"""Per-operation scope requirements and the allow/deny check.

Each privileged operation declares the scopes it needs. Before the
operation runs, the declared set is compared with the scopes the
authorization server granted when the current credential was issued or
refreshed. The access token's own claims are not consulted.
"""

from __future__ import annotations

__all__ = [
    "ScopeAuthorizer",
    "ScopeRequirement",
    "collect_scopes",
]

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

# resource:action, e.g. "read:clients", "create:resource_servers"
_SCOPE_PATTERN = re.compile(r"^[a-z][a-z0-9_.-]*:[a-z][a-z0-9_.-]*$")


@dataclass(frozen=True, slots=True)
class ScopeRequirement:
    """Scopes an operation needs before it may run.

    Attributes:
        operation: Operation name (e.g. "list_applications").
        scopes: Required scopes in resource:action form. Empty means
            the operation is unscoped.

    Raises:
        ValueError: If a scope is not in resource:action form.
    """

    operation: str
    scopes: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Accept any iterable, store a frozenset
        object.__setattr__(self, "scopes", frozenset(self.scopes))
        invalid = sorted(s for s in self.scopes if not _SCOPE_PATTERN.match(s))
        if invalid:
            raise ValueError(
                f"Invalid scope(s) for operation {self.operation!r}: {', '.join(invalid)} "
                "(expected resource:action)"
            )


class ScopeAuthorizer:
    """Decides whether granted scopes cover an operation's requirement."""

    @staticmethod
    def check(required: Iterable[str], granted: Iterable[str]) -> bool:
        """True if every required scope was granted (always True when none are required)."""
        return frozenset(required) <= frozenset(granted)

    @staticmethod
    def missing(required: Iterable[str], granted: Iterable[str]) -> tuple[str, ...]:
        """Required scopes that were not granted, sorted."""
        return tuple(sorted(frozenset(required) - frozenset(granted)))


def collect_scopes(requirements: Iterable[ScopeRequirement]) -> frozenset[str]:
    """Union of the scopes required by a set of operations.

    Used as the default scope request for `auth login`, so one login
    covers every registered operation.
    """
    scopes: set[str] = set()
    for requirement in requirements:
        scopes.update(requirement.scopes)
    return frozenset(scopes)
