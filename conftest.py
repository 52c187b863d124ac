from pathlib import Path

import pytest


@pytest.fixture
def capture(tmp_path):
    """Write ``data`` to a fresh capture file and return its path."""

    def _write(data: bytes, name: str = "capture.log") -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return _write
