"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Staff roles with increasing privilege levels.

    - CLINICIAN: Own caseload and calendar
    - STAFF: Front desk scheduling for the practice
    - BUSINESS_ADMIN: Practice owner (tenant settings, all calendars)
    """

    CLINICIAN = "clinician"
    STAFF = "staff"
    BUSINESS_ADMIN = "business_admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_
