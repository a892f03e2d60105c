"""
GED Acting User — Identity supplied by the session layer for every mutation.

The core trusts this value as-is; authentication happens elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

# Authority levels: lower is more privileged
AUTHORITY_ADMIN = 0
AUTHORITY_MANAGER = 1


@dataclass(frozen=True)
class ActingUser:
    """The user on whose behalf a service call is made."""

    user_id: int
    username: str
    authority_level: int
    role: Optional[str] = None
    full_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.authority_level == AUTHORITY_ADMIN

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for audit entries."""
        return {
            "user_id": self.user_id,
            "username": self.username,
            "authority_level": self.authority_level,
            "role": self.role,
        }
