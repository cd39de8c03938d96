"""
Persisted per-user sound preference.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from src.core.config import settings

logger = logging.getLogger(__name__)

SOUND_ENABLED_KEY = "incidentSoundEnabled"


def _safe_user_key(user_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", user_id) or "default"


@dataclass
class SoundPreferenceStore:
    """
    The "sound enabled" flag for one user session.

    Stored as JSON in <preferences_dir>/<user>.json so it survives restarts.
    Sound is enabled unless the user explicitly muted it.
    """
    user_id: str = "default"
    enabled: bool = True
    updated_at: Optional[str] = None

    _path: Optional[Path] = field(default=None, repr=False)

    @staticmethod
    def path_for(user_id: str, directory: Optional[Path] = None) -> Path:
        base = Path(directory) if directory is not None else settings.preferences_dir
        return base / f"{_safe_user_key(user_id)}.json"

    @classmethod
    def load(cls, user_id: str = "default", directory: Optional[Path] = None) -> "SoundPreferenceStore":
        """
        Load the preference for a user.

        Args:
            user_id: Session user; each user has their own file.
            directory: Override for settings.preferences_dir.

        Returns:
            SoundPreferenceStore instance (enabled when nothing is stored)
        """
        file_path = cls.path_for(user_id, directory)

        if not file_path.exists():
            store = cls(user_id=user_id)
            store._path = file_path
            return store

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)

            store = cls(
                user_id=user_id,
                enabled=bool(data.get(SOUND_ENABLED_KEY, True)),
                updated_at=data.get("updated_at"),
            )
            store._path = file_path
            logger.debug(f"Loaded sound preference for {user_id}: enabled={store.enabled}")
            return store

        except (OSError, ValueError) as e:
            logger.error(f"Error loading sound preference: {e}")
            store = cls(user_id=user_id)
            store._path = file_path
            return store

    def save(self) -> bool:
        """
        Save the preference to its JSON file.

        Returns:
            False when the file could not be written; the in-memory value
            still applies for this session.
        """
        if self._path is None:
            self._path = self.path_for(self.user_id)

        data = {
            SOUND_ENABLED_KEY: self.enabled,
            "updated_at": self.updated_at,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save sound preference to {self._path}: {e}")
            return False
        return True

    def is_enabled(self) -> bool:
        return self.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        self.updated_at = datetime.now().isoformat()
        self.save()
        logger.info(f"Alert sound {'enabled' if self.enabled else 'muted'} for {self.user_id}")

    def toggle(self) -> bool:
        """Flip the flag, persist it and return the new value."""
        self.set_enabled(not self.enabled)
        return self.enabled


__all__ = ["SoundPreferenceStore", "SOUND_ENABLED_KEY"]
