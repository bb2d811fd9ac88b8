"""
core/constants.py -- Domain constants shared by every layer.

Role names double as scope strings (scope[0] is always the role name), so
they are part of the token contract and must not be renamed lightly.
"""

from enum import Enum


class UserRole(str, Enum):
    USER = "User"
    ADMIN = "Admin"
    SUPER_ADMIN = "Super Admin"


class PermissionState(str, Enum):
    INCLUDED = "Included"
    EXCLUDED = "Excluded"
    FORBIDDEN = "Forbidden"


class AuthStrategy(str, Enum):
    TOKEN = "standard-jwt"
    SESSION = "jwt-with-session"
    REFRESH = "jwt-with-session-and-refresh-token"


# Error message the server emits when an access token has expired under the
# refresh strategy. The client interceptor keys its retry on this exact text.
EXPIRED_ACCESS_TOKEN = "Expired Access Token"
