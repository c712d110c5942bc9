"""Failure taxonomy for Discord identity resolution.

Everything the resolver can raise derives from ``IdentityError``.
``Rejected`` subclasses are terminal outcomes of a resolution attempt; the
store never sees a write before one of them is raised. ``StoreError`` is
the odd one out: it means "try again", not "no access".
"""


class IdentityError(Exception):
    """Base class for identity resolution failures."""


class Rejected(IdentityError):
    """A resolution attempt ended without granting a session."""

    reason: str = "rejected"


class InvalidGrant(Rejected):
    """Authorization code expired, already used, or issued for another redirect URI."""

    reason = "invalid_grant"


class Unauthorized(Rejected):
    """The user's Discord access token was rejected."""

    reason = "unauthorized"


class NotAMember(Rejected):
    """The Discord user has no membership record in the clan guild."""

    reason = "not_member"


class NoQualifyingRole(Rejected):
    """The member holds none of the configured rank roles."""

    reason = "no_role"


class UpstreamError(Rejected):
    """Transport failure, rate limit, or 5xx from Discord. Safe to retry."""

    reason = "upstream_error"


class StoreError(IdentityError):
    """Persistence failure while writing the account or profile."""

    reason = "store_error"
