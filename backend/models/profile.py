"""User profile data models."""
from dataclasses import dataclass
from typing import Optional

from config import PRIVILEGED_ROLE


@dataclass
class Profile:
    """Credit balance, role and preferences of a user."""
    user_id: str
    balance: int
    role: str = "user"
    model_preference: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role == PRIVILEGED_ROLE
