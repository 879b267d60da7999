"""AuthN/AuthZ for wasteops.

Credential scheme
-----------------
``Authorization: Bearer <jwt>`` (ES256 by default), issued by
``POST /api/v1/auth/login``.  Claims: ``sub``, ``iss``, ``iat``, ``nbf``,
``exp``, ``aud`` (``["level:<n>"]``), ``staff_id``, ``email``, ``role``,
``status``.  WebSocket clients send ``Sec-WebSocket-Protocol: Bearer, <jwt>``.

Privilege levels (encoded in ``aud``)
-------------------------------------
``citizen`` 1 < ``collector`` = ``driver`` 4 < ``route_manager`` 6 < ``admin`` 9

Fine-grained permissions are ``group:name`` strings granted through roles;
see :mod:`wasteops.auth.catalog`.
"""

from wasteops.auth.deps import (
    Principal,
    TokenContext,
    get_current_staff,
    require_level,
    require_permissions,
    require_socket_level,
)
from wasteops.auth.roles import require_owner_or_roles, require_roles

__all__ = [
    "Principal",
    "TokenContext",
    "get_current_staff",
    "require_level",
    "require_owner_or_roles",
    "require_permissions",
    "require_roles",
    "require_socket_level",
]
