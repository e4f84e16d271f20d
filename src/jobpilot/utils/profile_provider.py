"""
Profile provider backed by the store.

The profile editor (outside this package) writes one Profile per user into the
"profiles" kind, including the embedding it regenerates on every edit. The
pipeline only reads it.
"""

from typing import Any, List, Optional

from jobpilot.config.entity_schemas import Profile


class StoreProfileProvider:
    """Profile provider reading the "profiles" kind maintained by the profile editor."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.store.get("profiles", user_id)

    def get_profile_embedding(self, user_id: str) -> Optional[List[float]]:
        profile = self.get_profile(user_id)
        return profile.embedding if profile else None

    def get_baseline_cv(self, user_id: str) -> Optional[str]:
        profile = self.get_profile(user_id)
        return profile.baseline_cv if profile else None
