"""Atomic file writes — temp file in the target directory, then os.replace."""

import json
import os
import tempfile
from pathlib import Path


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` so readers never observe a partial file.

    Args:
        path: Destination file. Parent directories are created.
        data: Full file contents.

    Raises:
        OSError: If the temp file cannot be written or renamed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, str(path))
    except Exception:
        # Clean up temp file on failure
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_json(path: Path, payload: dict) -> None:
    """Serialize ``payload`` as indented JSON and write it atomically."""
    text = json.dumps(payload, indent=2, sort_keys=True)
    atomic_write_bytes(path, (text + "\n").encode("utf-8"))
