"""
Report location - automatic one-shot lookup plus manual override.

A lookup that is denied, unsupported, or slower than the timeout leaves
the location as it was and raises nothing.
"""

import asyncio
import logging
import re

from fieldreport.capabilities import Capabilities
from fieldreport.models import CapabilityUnavailableError, Report
from fieldreport.config import (
    COORDINATE_PRECISION,
    GEOLOCATION_TIMEOUT_SECONDS,
    MAPS_URL,
)

logger = logging.getLogger(__name__)

COORDINATE_PATTERN = re.compile(r"Lat: ([-\d.]+), Long: ([-\d.]+)")


def format_coordinates(lat: float, lon: float) -> str:
    return f"Lat: {lat:.{COORDINATE_PRECISION}f}, Long: {lon:.{COORDINATE_PRECISION}f}"


def maps_link(location: str) -> str | None:
    """Map URL when the location is a coordinate pair, else None."""
    match = COORDINATE_PATTERN.search(location or "")
    if match is None:
        return None
    return MAPS_URL.format(lat=match.group(1), lon=match.group(2))


class LocationService:
    """Fills in report.location for one report."""

    def __init__(
        self,
        report: Report,
        capabilities: Capabilities,
        timeout: float = GEOLOCATION_TIMEOUT_SECONDS,
    ):
        self.report = report
        self.capabilities = capabilities
        self.timeout = timeout
        self._auto_attempted = False

    async def auto_detect(self) -> str:
        """Runs detect() once per report, and only while location is empty."""
        if self._auto_attempted or self.report.location:
            return self.report.location
        self._auto_attempted = True
        return await self.detect()

    async def detect(self) -> str:
        """Looks up the current position. Returns the location now in effect."""
        if not self.capabilities.probe().geolocation:
            logger.info("Geolocation not supported, location left unchanged")
            return self.report.location

        try:
            lat, lon = await asyncio.wait_for(
                self.capabilities.current_position(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.info("Geolocation timed out after %.0fs", self.timeout)
            return self.report.location
        except CapabilityUnavailableError as e:
            logger.info("Geolocation unavailable: %s", e)
            return self.report.location
        except Exception:
            logger.warning("Geolocation failed, location left unchanged", exc_info=True)
            return self.report.location

        self.report.location = format_coordinates(lat, lon)
        return self.report.location

    def set_manual(self, text: str) -> str:
        self.report.location = text.strip()
        return self.report.location
