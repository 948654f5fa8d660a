from brewlog.auth.middleware import (
    Identity,
    IdentityKind,
    current_identity,
    require_identity_for_writes,
)

__all__ = [
    'Identity',
    'IdentityKind',
    'current_identity',
    'require_identity_for_writes',
]
