"""Auth package: gateway-header actor resolution and role checks."""

from alumni_rewards.auth.dependencies import get_actor, require_staff

__all__ = [
    "get_actor",
    "require_staff",
]
