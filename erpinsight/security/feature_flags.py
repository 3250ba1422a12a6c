"""Feature flags with role, allow-list and percentage rollout targeting."""

import hashlib
import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from erpinsight.models.feature_flag import FeatureFlag
from erpinsight.models.user import Role
from erpinsight.database.feature_flag_repository import FeatureFlagRepository

logger = logging.getLogger(__name__)


COPILOT_ENABLED = "copilot_enabled"
COPILOT_ACTIONS = "copilot_actions"
COPILOT_AUTO_INSIGHTS = "copilot_auto_insights"


def default_flags() -> List[FeatureFlag]:
    """Initial flags: the assistant starts restricted to executives."""
    return [
        FeatureFlag(name=COPILOT_ENABLED, allowed_roles=[Role.ADMIN.value, Role.CEO.value]),
        FeatureFlag(name=COPILOT_ACTIONS, allowed_roles=[Role.ADMIN.value, Role.CEO.value]),
        FeatureFlag(
            name=COPILOT_AUTO_INSIGHTS,
            allowed_roles=[Role.ADMIN.value, Role.CEO.value, Role.MANAGER.value],
        ),
    ]


def rollout_bucket(name: str, user_id: str) -> int:
    """Stable 0-99 bucket for (flag, user), identical across processes."""
    digest = hashlib.sha256(f"{name}:{user_id}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % 100


class FeatureFlagStore(Protocol):
    def load_all(self) -> Dict[str, FeatureFlag]:
        ...

    def save(self, flag: FeatureFlag) -> None:
        ...


class InMemoryFeatureFlagStore:
    """Process-local store, seeded with the default flags."""

    def __init__(self, flags: Optional[List[FeatureFlag]] = None):
        self._flags: Dict[str, FeatureFlag] = {
            flag.name: flag for flag in (flags if flags is not None else default_flags())
        }

    def load_all(self) -> Dict[str, FeatureFlag]:
        return {name: flag.model_copy(deep=True) for name, flag in self._flags.items()}

    def save(self, flag: FeatureFlag) -> None:
        self._flags[flag.name] = flag.model_copy(deep=True)


class DatabaseFeatureFlagStore:
    """Flags persisted in `ai_feature_flags`.

    Missing default flags are written on first load, so a fresh database starts
    with the same restrictions as the in-memory store.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load_all(self) -> Dict[str, FeatureFlag]:
        db = self.session_factory()
        try:
            repo = FeatureFlagRepository(db)
            flags = {flag.name: flag for flag in repo.get_all()}
            for flag in default_flags():
                if flag.name not in flags:
                    flags[flag.name] = repo.save(flag)
            return flags
        finally:
            db.close()

    def save(self, flag: FeatureFlag) -> None:
        db = self.session_factory()
        try:
            FeatureFlagRepository(db).save(flag)
        finally:
            db.close()


class FeatureFlagRegistry:
    """Reads and mutates feature flags through a store.

    Mutations write through to the store and the local cache under one lock, so
    the next read sees them without a restart. Unknown flags read as disabled and
    mutations on them return False.
    """

    def __init__(self, store: Optional[FeatureFlagStore] = None):
        self.store = store if store is not None else InMemoryFeatureFlagStore()
        self._lock = threading.RLock()
        self._flags: Dict[str, FeatureFlag] = {}
        self.reload()

    def reload(self) -> None:
        """Re-read every flag from the store."""
        with self._lock:
            self._flags = self.store.load_all()

    def get_flag(self, name: str) -> Optional[FeatureFlag]:
        with self._lock:
            flag = self._flags.get(name)
            return flag.model_copy(deep=True) if flag else None

    def list_flags(self) -> List[FeatureFlag]:
        with self._lock:
            return [self._flags[name].model_copy(deep=True) for name in sorted(self._flags)]

    def is_feature_enabled(self, name: str, user_id: str, role: str) -> bool:
        flag = self.get_flag(name)
        if flag is None:
            return False
        if flag.enabled_globally:
            return True
        if role in flag.allowed_roles:
            return True
        if str(user_id) in flag.allowed_user_ids:
            return True
        if flag.rollout_percentage > 0 and rollout_bucket(name, str(user_id)) < flag.rollout_percentage:
            return True
        return False

    def _mutate(self, name: str, change: Callable[[FeatureFlag], FeatureFlag]) -> bool:
        with self._lock:
            flag = self._flags.get(name)
            if flag is None:
                logger.warning(f"Ignoring change to unknown feature flag {name}")
                return False
            updated = change(flag.model_copy(deep=True))
            self.store.save(updated)
            self._flags[name] = updated
            logger.info(f"Feature flag {name} updated")
            return True

    def grant_feature_access(self, name: str, user_id: str) -> bool:
        def change(flag: FeatureFlag) -> FeatureFlag:
            if str(user_id) not in flag.allowed_user_ids:
                flag.allowed_user_ids.append(str(user_id))
            return flag
        return self._mutate(name, change)

    def revoke_feature_access(self, name: str, user_id: str) -> bool:
        def change(flag: FeatureFlag) -> FeatureFlag:
            flag.allowed_user_ids = [uid for uid in flag.allowed_user_ids if uid != str(user_id)]
            return flag
        return self._mutate(name, change)

    def add_role_to_feature(self, name: str, role: str) -> bool:
        def change(flag: FeatureFlag) -> FeatureFlag:
            if role not in flag.allowed_roles:
                flag.allowed_roles.append(role)
            return flag
        return self._mutate(name, change)

    def remove_role_from_feature(self, name: str, role: str) -> bool:
        def change(flag: FeatureFlag) -> FeatureFlag:
            flag.allowed_roles = [r for r in flag.allowed_roles if r != role]
            return flag
        return self._mutate(name, change)

    def update_rollout_percentage(self, name: str, percentage: int) -> bool:
        clamped = max(0, min(100, int(percentage)))

        def change(flag: FeatureFlag) -> FeatureFlag:
            flag.rollout_percentage = clamped
            return flag
        return self._mutate(name, change)

    def set_enabled_globally(self, name: str, enabled: bool) -> bool:
        def change(flag: FeatureFlag) -> FeatureFlag:
            flag.enabled_globally = bool(enabled)
            return flag
        return self._mutate(name, change)

    def get_user_features(self, user_id: str, role: str) -> Dict[str, bool]:
        """Every flag's state for one caller."""
        return {flag.name: self.is_feature_enabled(flag.name, user_id, role) for flag in self.list_flags()}
