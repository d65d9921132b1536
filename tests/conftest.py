# In repository root

import sys
from pathlib import Path

# Add repository root to Python path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

import asyncio
import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from fieldreport.models import (
    CapabilitySet,
    CapabilityUnavailableError,
    ExportArtifact,
    RawInput,
    Report,
    ValidatedImage,
)
from fieldreport.transcoder import transcode_image


ACCEPTED_REPLY = {
    "isRejected": False,
    "completionPercentage": 80,
    "summary": "Wall plastering on the east side is nearly finished.",
    "details": [
        "Plaster applied evenly up to ceiling height",
        "Window frames masked and protected",
        "Scaffolding still in place on the north corner",
    ],
    "recommendations": "Finish the north corner before removing scaffolding.",
}


# ============================================================================
# IMAGE FACTORIES
# ============================================================================

def make_image_bytes(width: int = 600, height: int = 600, fmt: str = "JPEG", color="red", mode="RGB") -> bytes:
    img = Image.new(mode, (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    """Factory: image_bytes(width, height, fmt='JPEG')"""
    return make_image_bytes


@pytest.fixture
def photo_bytes():
    """A 1920x1080 JPEG, the size of a typical phone photo"""
    return make_image_bytes(1920, 1080, color=(70, 130, 180))


@pytest.fixture
def encoded_image():
    data = make_image_bytes(800, 600, color=(120, 90, 60))
    raw = RawInput(data=data, media_type="image/jpeg")
    return transcode_image(ValidatedImage(raw=raw, width=800, height=600, format="JPEG"))


@pytest.fixture
def sample_report(encoded_image):
    return Report(
        image=encoded_image,
        completion_percentage=80,
        summary=ACCEPTED_REPLY["summary"],
        details=list(ACCEPTED_REPLY["details"]),
        recommendation=ACCEPTED_REPLY["recommendations"],
        timestamp=datetime(2026, 3, 14, 9, 30, 15, tzinfo=timezone.utc),
    )


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeOracle:
    """Returns a canned reply (or raises it) and counts calls."""

    def __init__(self, reply=None):
        self.reply = dict(ACCEPTED_REPLY) if reply is None else reply
        self.calls: list[tuple[bytes, str]] = []

    async def classify(self, image_bytes: bytes, media_type: str, instruction: str):
        self.calls.append((image_bytes, media_type))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class FakeUploader:
    """Counts uploads; optional delay lets concurrent callers overlap."""

    def __init__(self, link: str = "https://drive.example.com/photo/1", delay: float = 0.0, error: Exception | None = None):
        self.link = link
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, Report]] = []

    async def upload(self, url: str, report: Report) -> str:
        self.calls.append((url, report))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.link


class FakeCapabilities:
    """Records every platform call; capabilities switch on via keyword flags."""

    def __init__(self, position=(-6.2, 106.816666), position_delay: float = 0.0,
                 fail_clipboard: bool = False, **flags):
        self.caps = CapabilitySet(**flags)
        self.position = position
        self.position_delay = position_delay
        self.fail_clipboard = fail_clipboard
        self.probes = 0
        self.opened: list[str] = []
        self.copied_text: list[str] = []
        self.copied_images: list[tuple[bytes, str]] = []
        self.shared: list[tuple[ExportArtifact, str, str]] = []

    def probe(self) -> CapabilitySet:
        self.probes += 1
        return self.caps

    async def copy_text(self, text: str) -> None:
        if self.fail_clipboard:
            raise CapabilityUnavailableError("denied")
        self.copied_text.append(text)

    async def copy_image(self, image: bytes, media_type: str) -> None:
        if self.fail_clipboard:
            raise CapabilityUnavailableError("denied")
        self.copied_images.append((image, media_type))

    async def open_url(self, url: str) -> None:
        self.opened.append(url)

    async def share(self, file: ExportArtifact, title: str, text: str) -> None:
        self.shared.append((file, title, text))

    async def current_position(self) -> tuple[float, float]:
        if self.position_delay:
            await asyncio.sleep(self.position_delay)
        if self.position is None:
            raise CapabilityUnavailableError("permission denied")
        if isinstance(self.position, Exception):
            raise self.position
        return self.position


@pytest.fixture
def fake_oracle():
    return FakeOracle()


@pytest.fixture
def fake_uploader():
    return FakeUploader()


@pytest.fixture
def make_capabilities():
    """Factory: make_capabilities(open_url=True, clipboard_image=True, ...)"""
    return FakeCapabilities


@pytest.fixture
def accepted_reply():
    return {**ACCEPTED_REPLY, "details": list(ACCEPTED_REPLY["details"])}
