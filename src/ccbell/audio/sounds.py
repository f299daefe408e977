"""Sound references and the bundled notification tones.

References come in three forms:

* ``bundled:<name>`` — a tone synthesized with numpy on first use and cached
  as a wav file under ``sounds_dir``. No audio assets ship with ccbell.
* ``system:<name>`` — a macOS system sound (``/System/Library/Sounds``).
* ``custom:<path>`` or a bare path — any file the player understands.

Synthesis is at fixed amplitude; playback volume is applied by the player.
"""

import io
import logging
import wave
from pathlib import Path

import numpy as np

from ccbell.errors import PlaybackError
from ccbell.utils.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

SAMPLE_RATE = 22050
SYSTEM_SOUNDS_DIR = Path("/System/Library/Sounds")

_AMPLITUDE = 0.8


def _envelope(n_samples: int, attack: int, release: int) -> np.ndarray:
    """Linear fade in, sustain, linear fade out."""
    attack = min(attack, n_samples // 2)
    release = min(release, n_samples - attack)
    return np.concatenate([
        np.linspace(0, 1, attack),
        np.ones(n_samples - attack - release),
        np.linspace(1, 0, release),
    ])[:n_samples]


def generate_chime(
    notes: tuple[float, ...],
    note_duration: float = 0.3,
    sample_rate: int = SAMPLE_RATE,
    volume: float = _AMPLITUDE,
) -> np.ndarray:
    """Generate a sequence of notes, each with a soft envelope.

    Args:
        notes: Frequencies in Hz, played in order.
        note_duration: Seconds per note.
        sample_rate: Audio sample rate in Hz.
        volume: Amplitude multiplier (0.0–1.0).

    Returns:
        Audio data as int16 numpy array.
    """
    n_samples = int(sample_rate * note_duration)
    t = np.linspace(0, note_duration, n_samples, endpoint=False, dtype=np.float64)
    envelope = _envelope(n_samples, n_samples // 8, n_samples // 2)

    audio = np.concatenate([
        np.sin(2 * np.pi * freq * t) * envelope for freq in notes
    ]) * volume
    return (audio * 32767).astype(np.int16)


def generate_alert(
    high: float = 880.0,
    low: float = 660.0,
    duration: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
    volume: float = _AMPLITUDE,
) -> np.ndarray:
    """Generate an alternating two-tone alert (four switches per second)."""
    n_samples = int(sample_rate * duration)
    t = np.linspace(0, duration, n_samples, endpoint=False, dtype=np.float64)
    freq = np.where((t * 8).astype(int) % 2 == 0, high, low)

    eighth = n_samples // 8
    audio = np.sin(2 * np.pi * freq * t) * _envelope(n_samples, eighth, eighth) * volume
    return (audio * 32767).astype(np.int16)


# Bundled name -> synthesizer
BUNDLED_SOUNDS = {
    "stop": lambda: generate_chime((523.25, 659.25, 783.99)),  # C5 E5 G5
    "permission_prompt": lambda: generate_alert(),
    "idle_prompt": lambda: generate_chime((659.25, 523.25), note_duration=0.4),  # E5 C5
    "subagent": lambda: generate_chime((783.99,), note_duration=0.2),  # G5
}


def wav_bytes(audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Encode mono int16 audio as a wav file."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # int16 = 2 bytes
        wf.setframerate(sample_rate)
        wf.writeframes(audio.tobytes())
    return buffer.getvalue()


def bundled_path(name: str, sounds_dir: Path) -> Path:
    """Path of a bundled tone, synthesizing it on first use.

    Raises:
        PlaybackError: If ``name`` is not a bundled sound or cannot be written.
    """
    synth = BUNDLED_SOUNDS.get(name)
    if synth is None:
        raise PlaybackError(f"Unknown bundled sound: {name!r}")

    path = Path(sounds_dir) / f"{name}.wav"
    if not path.exists():
        try:
            atomic_write_bytes(path, wav_bytes(synth()))
        except OSError as exc:
            raise PlaybackError(f"Could not write bundled sound {path}: {exc}") from exc
        logger.debug("Synthesized bundled sound %s", path)
    return path


def sound_path(reference: str, sounds_dir: Path) -> Path:
    """Convert a sound reference to an existing file path.

    Args:
        reference: ``bundled:``, ``system:`` or ``custom:`` reference, or a path.
        sounds_dir: Cache directory for bundled tones.

    Returns:
        Path to a file that exists.

    Raises:
        PlaybackError: If the reference is unknown or the file is missing.
    """
    scheme, sep, rest = reference.partition(":")
    if sep and scheme == "bundled":
        return bundled_path(rest, sounds_dir)

    if sep and scheme == "system":
        path = SYSTEM_SOUNDS_DIR / f"{rest}.aiff"
    elif sep and scheme == "custom":
        path = Path(rest).expanduser()
    else:
        path = Path(reference).expanduser()

    if not path.is_file():
        raise PlaybackError(f"Sound file not found: {path}")
    return path
