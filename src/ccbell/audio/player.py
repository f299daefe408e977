"""Audio player boundary — hands a file path and a volume to a system player."""

import logging
import shutil
import subprocess
import sys
from pathlib import Path

from ccbell.errors import PlaybackError

logger = logging.getLogger(__name__)

# Linux priority: mpv (most reliable), paplay (PulseAudio), aplay (ALSA), ffplay
_LINUX_PLAYERS = ("mpv", "paplay", "aplay", "ffplay")
SUPPORTED_PLAYERS = ("afplay",) + _LINUX_PLAYERS


def find_player(preferred: str = "") -> str:
    """Find an available audio player on the system.

    Args:
        preferred: Player to use if installed (from ``CCBELL_PLAYER``).

    Returns:
        Executable name of the player.

    Raises:
        PlaybackError: If no supported audio player is found.
    """
    if preferred:
        if preferred in SUPPORTED_PLAYERS and shutil.which(preferred):
            return preferred
        logger.warning("Preferred player %r unavailable, auto-detecting", preferred)

    # afplay is built into macOS
    if sys.platform == "darwin" and shutil.which("afplay"):
        return "afplay"

    for name in _LINUX_PLAYERS:
        if shutil.which(name):
            return name

    raise PlaybackError(
        "No audio player found. Install one of: mpv, ffmpeg (ffplay), "
        "pulseaudio-utils (paplay), or alsa-utils (aplay)"
    )


def build_command(player: str, path: Path, volume: float) -> list[str]:
    """Build the player command line for ``path`` at ``volume`` (0.0–1.0).

    aplay has no volume control; the file plays at its own level.
    """
    volume = min(1.0, max(0.0, volume))
    if player == "afplay":
        return ["afplay", "-v", f"{volume:.2f}", str(path)]
    if player == "mpv":
        return ["mpv", "--no-video", "--really-quiet", f"--volume={round(volume * 100)}", str(path)]
    if player == "paplay":
        return ["paplay", f"--volume={round(volume * 65536)}", str(path)]
    if player == "aplay":
        return ["aplay", "-q", str(path)]
    if player == "ffplay":
        return [
            "ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet",
            "-volume", str(round(volume * 100)), str(path),
        ]
    raise PlaybackError(f"Unsupported audio player: {player!r}")


class AudioPlayer:
    """Plays sound files through the best available system player."""

    def __init__(self, preferred: str = "", timeout: float = 10.0) -> None:
        self._preferred = preferred
        self._timeout = timeout

    def play(self, path: Path, volume: float, wait: bool = False) -> None:
        """Play a sound file.

        Args:
            path: Existing sound file.
            volume: 0.0–1.0.
            wait: Block until playback ends (bounded by the timeout) instead
                of spawning a detached player.

        Raises:
            PlaybackError: If no player exists, it cannot start, or it exits non-zero.
        """
        player = find_player(self._preferred)
        cmd = build_command(player, path, volume)
        logger.debug("Running: %s", " ".join(cmd))

        if not wait:
            try:
                subprocess.Popen(
                    cmd,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    start_new_session=True,
                )
            except OSError as exc:
                raise PlaybackError(f"Could not start {player}: {exc}") from exc
            return

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Audio player %s exceeded %.1fs, stopped", player, self._timeout)
            return
        except OSError as exc:
            raise PlaybackError(f"Could not start {player}: {exc}") from exc

        if result.returncode != 0:
            raise PlaybackError(f"Audio player {player} exited with code {result.returncode}")
