"""
Platform capabilities - clipboard, URL hand-off, file share, geolocation.

Callers probe() once per operation and branch on the result; they never
re-probe mid-operation. A missing capability raises
CapabilityUnavailableError when used anyway.
"""

import asyncio
import logging
import webbrowser
from typing import Protocol

from fieldreport.models import CapabilitySet, CapabilityUnavailableError, ExportArtifact

logger = logging.getLogger(__name__)


class Capabilities(Protocol):
    """Facilities the host platform may or may not provide."""

    def probe(self) -> CapabilitySet:
        ...

    async def copy_text(self, text: str) -> None:
        ...

    async def copy_image(self, image: bytes, media_type: str) -> None:
        ...

    async def open_url(self, url: str) -> None:
        ...

    async def share(self, file: ExportArtifact, title: str, text: str) -> None:
        ...

    async def current_position(self) -> tuple[float, float]:
        ...


class DesktopCapabilities:
    """
    Terminal host: URLs open in the default browser or mail client.

    No clipboard, file share, or positioning is available.
    """

    def probe(self) -> CapabilitySet:
        return CapabilitySet(open_url=True)

    async def copy_text(self, text: str) -> None:
        raise CapabilityUnavailableError("Clipboard is not available")

    async def copy_image(self, image: bytes, media_type: str) -> None:
        raise CapabilityUnavailableError("Clipboard is not available")

    async def open_url(self, url: str) -> None:
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            raise CapabilityUnavailableError("No browser available to open the link")
        logger.debug("Opened %s", url[:80])

    async def share(self, file: ExportArtifact, title: str, text: str) -> None:
        raise CapabilityUnavailableError("File sharing is not available")

    async def current_position(self) -> tuple[float, float]:
        raise CapabilityUnavailableError("Geolocation is not available")
