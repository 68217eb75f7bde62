"""Central authorization table.

Every inbound request is checked against ``POLICY`` before any handler
runs. The table is an ordered tuple of immutable ``Rule`` records; the first
rule whose method matcher and path pattern both match decides the outcome.
When nothing matches, ``DEFAULT_RULE`` applies and any authenticated caller
is let through.

Path patterns are slash-separated segments:

- a literal segment matches itself,
- ``*`` or ``{name}`` matches exactly one segment,
- a trailing ``**`` matches zero or more remaining segments, so
  ``/books/**`` covers ``/books``, ``/books/1`` and ``/books/search/title``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple

from library_app.errors import ForbiddenError, UnauthorizedError
from library_app.models import Role
from library_app.security import Identity

logger = logging.getLogger(__name__)


class Requirement(Enum):
    PUBLIC = "PUBLIC"
    ANONYMOUS_ONLY = "ANONYMOUS_ONLY"
    AUTHENTICATED = "AUTHENTICATED"
    ROLES = "ROLES"


class Decision(Enum):
    ALLOW = "ALLOW"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"


def _split(path: str) -> Tuple[str, ...]:
    path = path.split("?", 1)[0].strip("/")
    return tuple(path.split("/")) if path else ()


@dataclass(frozen=True)
class PathPattern:
    pattern: str
    segments: Tuple[str, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        segments = _split(self.pattern)
        if "**" in segments[:-1]:
            raise ValueError(f"'**' is only allowed as the last segment: {self.pattern}")
        object.__setattr__(self, "segments", segments)

    @property
    def is_prefix(self) -> bool:
        return bool(self.segments) and self.segments[-1] == "**"

    def matches(self, path: str) -> bool:
        parts = _split(path)
        expected = self.segments[:-1] if self.is_prefix else self.segments
        if self.is_prefix:
            if len(parts) < len(expected):
                return False
        elif len(parts) != len(expected):
            return False
        for want, got in zip(expected, parts):
            if want == "*" or (want.startswith("{") and want.endswith("}")):
                continue
            if want != got:
                return False
        return True


@dataclass(frozen=True)
class Rule:
    """One row of the policy table.

    ``methods`` is None for "any verb". ``roles`` is only consulted for
    ``Requirement.ROLES``; holding any one of them is enough.
    """

    methods: Optional[FrozenSet[str]]
    patterns: Tuple[PathPattern, ...]
    requirement: Requirement
    roles: FrozenSet[Role] = frozenset()

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return any(p.matches(path) for p in self.patterns)

    def decide(self, identity: Optional[Identity]) -> Decision:
        if self.requirement is Requirement.PUBLIC:
            return Decision.ALLOW
        if self.requirement is Requirement.ANONYMOUS_ONLY:
            return Decision.ALLOW if identity is None else Decision.FORBIDDEN
        if identity is None:
            return Decision.UNAUTHORIZED
        if self.requirement is Requirement.AUTHENTICATED:
            return Decision.ALLOW
        return Decision.ALLOW if identity.role in self.roles else Decision.FORBIDDEN


def rule(
    methods: Optional[Iterable[str]],
    patterns: Sequence[str],
    requirement: Requirement,
    roles: Iterable[Role] = (),
) -> Rule:
    return Rule(
        methods=frozenset(m.upper() for m in methods) if methods is not None else None,
        patterns=tuple(PathPattern(p) for p in patterns),
        requirement=requirement,
        roles=frozenset(roles),
    )


STAFF = (Role.LIBRARIAN, Role.ADMIN)

POLICY: Tuple[Rule, ...] = (
    # API documentation
    rule(["GET", "HEAD"], ["/docs/**", "/openapi/**"], Requirement.PUBLIC),
    # self-registration stays closed to logged-in sessions
    rule(["POST"], ["/users"], Requirement.ANONYMOUS_ONLY),
    # catalog browsing
    rule(["GET", "HEAD"], ["/books/**", "/categories/**"], Requirement.PUBLIC),
    rule(["POST", "PUT", "DELETE"], ["/books/**"], Requirement.ROLES, STAFF),
    rule(None, ["/categories/**"], Requirement.ROLES, STAFF),
    # profile self-service, ahead of the admin-only user rules
    rule(["GET", "PUT"], ["/users/me"], Requirement.AUTHENTICATED),
    rule(["GET", "PUT", "DELETE"], ["/users/**"], Requirement.ROLES, [Role.ADMIN]),
    rule(["POST"], ["/users/**"], Requirement.ANONYMOUS_ONLY),
    rule(None, ["/loans/**"], Requirement.AUTHENTICATED),
    rule(None, ["/notifications/**"], Requirement.AUTHENTICATED),
    rule(None, ["/reports/**"], Requirement.ROLES, [Role.ADMIN]),
)

DEFAULT_RULE = rule(None, ["/**"], Requirement.AUTHENTICATED)


def find_rule(method: str, path: str, rules: Sequence[Rule] = POLICY) -> Rule:
    for candidate in rules:
        if candidate.matches(method, path):
            return candidate
    return DEFAULT_RULE


def evaluate(
    method: str,
    path: str,
    identity: Optional[Identity],
    rules: Sequence[Rule] = POLICY,
) -> Decision:
    return find_rule(method, path, rules).decide(identity)


def authorize(
    method: str,
    path: str,
    identity: Optional[Identity],
    rules: Sequence[Rule] = POLICY,
) -> None:
    """Raise ``UnauthorizedError`` or ``ForbiddenError`` unless the request is allowed."""
    decision = evaluate(method, path, identity, rules)
    if decision is Decision.ALLOW:
        return
    who = identity.email if identity else "anonymous"
    logger.warning("Denied %s %s for %s: %s", method, path, who, decision.value)
    if decision is Decision.UNAUTHORIZED:
        raise UnauthorizedError("Full authentication is required to access this resource")
    raise ForbiddenError("Access is denied")
