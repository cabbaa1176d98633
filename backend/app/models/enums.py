"""
User roles enumeration.

Defines the role types for the OTP numbers platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operator with access to provider accounts and balance adjustments
        USER: Bot customer buying numbers (default role)
    """
    ADMIN = "ADMIN"
    USER = "USER"
