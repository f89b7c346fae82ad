"""
User roles enumeration.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Reviews parcel requests and drives parcels through delivery
        USER: Sends and receives parcels (default role)
    """
    USER = "USER"
    ADMIN = "ADMIN"
