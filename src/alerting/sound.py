"""
Alert sound control.

One controller owns the audio channel for the whole process so alerts never
overlap: every new sound stops the current one first, CRITICAL loops are
force-stopped at their cap, and playback failures are logged without
touching the visual alert.

State machine:
    IDLE -> PLAYING / LOOPING -> STOPPED -> IDLE
"""

import abc
import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from src.core.config import settings
from src.incident_sync.errors import PlaybackBlockedError

from .alerts import AlertConfig

logger = logging.getLogger(__name__)


class SoundState(str, Enum):
    """Audio channel state."""
    IDLE = "IDLE"
    PLAYING = "PLAYING"
    LOOPING = "LOOPING"
    STOPPED = "STOPPED"


class PlaybackResult(str, Enum):
    """Outcome of the last playback request."""
    PLAYED = "PLAYED"
    BLOCKED = "BLOCKED"
    FAILED = "FAILED"
    MUTED = "MUTED"


class SoundPlayer(abc.ABC):
    """Platform audio backend."""

    @abc.abstractmethod
    async def play(self, loop: bool = False) -> None:
        """
        Start playback; returns once the sound is underway.

        Raises:
            PlaybackBlockedError: Refused by platform policy.
            PlaybackError: Any other playback failure.
        """
        pass

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop playback immediately and rewind."""
        pass


class LoggingSoundPlayer(SoundPlayer):
    """Headless player that only logs what would be played."""

    def __init__(self, sound_file: Optional[str] = None, volume: Optional[float] = None):
        self.sound_file = sound_file or settings.sound_file
        self.volume = volume if volume is not None else settings.sound_volume

    async def play(self, loop: bool = False) -> None:
        mode = "looping" if loop else "once"
        logger.info(f"Playing {self.sound_file} {mode} at volume {self.volume:.0%}")

    def stop(self) -> None:
        logger.debug(f"Stopped {self.sound_file}")


class AlertSoundController:
    """
    Serializes alert sounds on a single channel.

    Usage:
        controller = AlertSoundController(player, sound_enabled=prefs.is_enabled)
        controller.play(PRIORITY_CONFIG[IncidentPriority.CRITICAL])
        ...
        controller.stop()
    """

    def __init__(
        self,
        player: Optional[SoundPlayer] = None,
        sound_enabled: Optional[Callable[[], bool]] = None,
    ):
        """
        Args:
            player: Audio backend.
            sound_enabled: Returns False when the user muted alert sounds.
        """
        self.player = player or LoggingSoundPlayer()
        self._sound_enabled = sound_enabled or (lambda: True)

        self._state = SoundState.IDLE
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._loop_timer: Optional[asyncio.TimerHandle] = None

        self.last_result: Optional[PlaybackResult] = None
        self.transitions: List[SoundState] = []

    @property
    def state(self) -> SoundState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state in (SoundState.PLAYING, SoundState.LOOPING)

    def _set_state(self, state: SoundState) -> None:
        self._state = state
        self.transitions.append(state)

    def play(self, config: AlertConfig) -> bool:
        """
        Start the sound described by ``config``, stopping any current sound.

        Playback itself is fire-and-forget; its outcome lands in
        ``last_result``.

        Returns:
            True if playback was started.
        """
        if not config.play_sound:
            return False

        self.stop()

        if not self._sound_enabled():
            self.last_result = PlaybackResult.MUTED
            logger.debug("Alert sound muted by user preference")
            return False

        self._generation += 1
        generation = self._generation
        looping = config.loop_sound

        self._set_state(SoundState.LOOPING if looping else SoundState.PLAYING)

        if looping and config.max_loop_duration:
            self._loop_timer = asyncio.get_running_loop().call_later(
                config.max_loop_duration,
                self._on_loop_cap,
                generation,
            )

        self._task = asyncio.create_task(self._start_playback(generation, looping))
        return True

    def stop(self) -> None:
        """Stop the current sound, if any, and return to IDLE."""
        self._generation += 1

        if self._loop_timer is not None:
            self._loop_timer.cancel()
            self._loop_timer = None

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        if self.is_playing:
            self._set_state(SoundState.STOPPED)
            try:
                self.player.stop()
            except Exception as e:
                logger.warning(f"Failed to stop alert sound: {e}")
            self._set_state(SoundState.IDLE)

    async def _start_playback(self, generation: int, looping: bool) -> None:
        if generation != self._generation:
            return
        try:
            await self.player.play(loop=looping)
        except PlaybackBlockedError as e:
            logger.warning(f"Alert sound blocked by platform policy: {e}")
            self._playback_failed(generation, PlaybackResult.BLOCKED)
            return
        except Exception as e:
            logger.error(f"Alert sound playback failed: {e}")
            self._playback_failed(generation, PlaybackResult.FAILED)
            return

        if generation == self._generation:
            self.last_result = PlaybackResult.PLAYED

    def _playback_failed(self, generation: int, result: PlaybackResult) -> None:
        if generation != self._generation:
            return
        self.last_result = result
        if self._loop_timer is not None:
            self._loop_timer.cancel()
            self._loop_timer = None
        if self.is_playing:
            self._set_state(SoundState.STOPPED)
        self._set_state(SoundState.IDLE)

    def _on_loop_cap(self, generation: int) -> None:
        if generation != self._generation:
            return
        logger.info("Looping alert sound reached its maximum duration")
        self._loop_timer = None
        self.stop()


__all__ = [
    "SoundState",
    "PlaybackResult",
    "SoundPlayer",
    "LoggingSoundPlayer",
    "AlertSoundController",
]
