# conftest.py
# Put the repository root on sys.path so `import cim_extract` works
# without an editable install, and share small fixtures across tests.

import base64
import io
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_jpeg_b64(width: int = 400, height: int = 300, noise: bool = True) -> str:
    """A real JPEG page image, base64 encoded."""
    from PIL import Image

    if noise:
        import random

        rng = random.Random(width * 31 + height)
        img = Image.frombytes("RGB", (width, height), bytes(rng.getrandbits(8) for _ in range(width * height * 3)))
    else:
        img = Image.new("RGB", (width, height), (240, 240, 240))
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=95)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def jpeg_page():
    """Factory for real base64 JPEG pages."""
    return make_jpeg_b64
