"""
Delivery orchestrator - renders a finalized report and dispatches it.

The photo is uploaded at most once per report and the link reused by
every channel. Upload lock and per-channel in-flight flags live on the
Report itself, so they hold across every ReportDelivery built for it. Channel errors never touch the report's analysis
fields or the lifecycle state.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import quote

from fieldreport.capabilities import Capabilities
from fieldreport.export import DocumentRenderer, PillowPdfRenderer
from fieldreport.location import LocationService, maps_link
from fieldreport.storage import ReportUploader
from fieldreport.models import (
    CapabilitySet,
    CapabilityUnavailableError,
    Channel,
    ChannelBusyError,
    ConfigurationMissingError,
    DeliveryOutcome,
    ExportArtifact,
    Report,
    Settings,
    UploadFailedError,
    UploadLinkAlreadySetError,
)
from fieldreport.config import (
    MAIL_SUBJECT,
    MESSAGING_URL,
    MISSING_LOCATION_TEXT,
    REPORT_TITLE,
    SHARE_TITLE,
)

logger = logging.getLogger(__name__)

# Order in which send() looks for a configured destination.
SEND_PRIORITY: tuple[tuple[Channel, str], ...] = (
    (Channel.MESSAGING, "messaging_number"),
    (Channel.MAIL, "email_address"),
    (Channel.SPREADSHEET, "spreadsheet_url"),
)


class ReportDelivery:
    """Every way a finalized report can leave the device."""

    def __init__(
        self,
        report: Report,
        settings: Settings,
        capabilities: Capabilities,
        uploader: ReportUploader | None = None,
        renderer: DocumentRenderer | None = None,
    ):
        self.report = report
        self.settings = settings
        self.capabilities = capabilities
        self.uploader = uploader or ReportUploader()
        self.renderer = renderer or PillowPdfRenderer()
        self.location = LocationService(report, capabilities)

    # --- Rendering ---

    def render_text(self, link: str | None = None) -> str:
        """Canonical shareable text. The photo line appears only with a link."""
        report = self.report
        active_link = link or report.uploaded_link

        location = report.location or MISSING_LOCATION_TEXT
        map_url = maps_link(report.location)
        if map_url:
            location += f"\n🔗 Maps: {map_url}"

        lines = [
            f"*{REPORT_TITLE}*",
            f"📅 Time: {report.display_timestamp}",
            f"📍 Location: {location}",
            "",
            "*Work Status*",
            f"📊 Progress: {report.completion_percentage:g}%",
            f"📝 Summary: {report.summary}",
            "",
            "*Technical Details*",
            *(f"- {detail}" for detail in report.details),
            "",
            "*Recommendation*",
            f"💡 {report.recommendation}",
        ]
        if active_link:
            lines += ["", "🖼️ *Field Photo Link:*", active_link]

        return "\n".join(lines).strip()

    # --- Upload ---

    async def ensure_uploaded(self) -> str | None:
        """
        Uploads the report once and returns its link.

        Returns None when no upload endpoint is configured. Concurrent
        callers share a single upload; later callers reuse the link.

        Raises:
            UploadFailedError: If the upload was attempted and failed.
        """
        if self.report.uploaded_link is not None:
            return self.report.uploaded_link
        if not self.settings.upload_url:
            return None

        async with self.report.guard.upload_lock:
            if self.report.uploaded_link is not None:
                return self.report.uploaded_link
            link = await self.uploader.upload(self.settings.upload_url, self.report)
            try:
                return self.report.set_uploaded_link(link)
            except UploadLinkAlreadySetError:
                logger.warning("Report got a link during upload; keeping %s", self.report.uploaded_link)
                return self.report.uploaded_link

    async def auto_upload(self) -> str | None:
        """
        One-shot upload right after a successful analysis, when enabled.

        Failures are logged, never raised.
        """
        guard = self.report.guard
        if guard.auto_upload_attempted:
            return self.report.uploaded_link
        guard.auto_upload_attempted = True

        if not (self.settings.auto_upload and self.settings.upload_url):
            return self.report.uploaded_link
        if Channel.CLOUD in guard.in_flight:
            return self.report.uploaded_link

        with self._dispatching(Channel.CLOUD):
            try:
                link = await self.ensure_uploaded()
                logger.info("Auto-upload succeeded")
                return link
            except UploadFailedError as e:
                logger.warning("Auto-upload failed: %s", e)
                return None

    # --- Channels ---

    async def dispatch(self, channel: Channel) -> DeliveryOutcome:
        handlers = {
            Channel.MESSAGING: self.send_messaging,
            Channel.MAIL: self.send_mail,
            Channel.SPREADSHEET: self.send_spreadsheet,
            Channel.SHARE: self.share,
            Channel.CLOUD: self.upload_to_cloud,
            Channel.COPY: self.copy_text,
            Channel.EXPORT: self.export_document,
        }
        return await handlers[channel]()

    async def send(self) -> DeliveryOutcome:
        """Primary action: first configured of messaging, mail, spreadsheet."""
        for channel, setting in SEND_PRIORITY:
            if getattr(self.settings, setting).strip():
                return await self.dispatch(channel)

        missing = [setting for _, setting in SEND_PRIORITY]
        raise ConfigurationMissingError(
            "Set a messaging number, an office email address, or a spreadsheet URL in settings first.",
            missing=missing,
        )

    async def send_messaging(self) -> DeliveryOutcome:
        """Upload (best effort), photo to clipboard (best effort), chat hand-off."""
        with self._dispatching(Channel.MESSAGING):
            caps = self.capabilities.probe()
            link = await self._try_upload()
            copied = await self._try_copy_image(caps)

            number = "".join(ch for ch in self.settings.messaging_number if ch.isdigit())
            url = MESSAGING_URL.format(number=number, text=quote(self.render_text(link), safe=""))
            await self._hand_off(caps, url)

            if copied:
                message = "Photo copied to clipboard. Paste it into the chat."
            else:
                message = "Report sent to chat. Attach the photo manually."
            return DeliveryOutcome(
                channel=Channel.MESSAGING, delivered=True, message=message,
                link=link, clipboard_image=copied,
            )

    async def send_mail(self) -> DeliveryOutcome:
        """Upload (best effort), photo to clipboard (best effort), mail hand-off."""
        with self._dispatching(Channel.MAIL):
            caps = self.capabilities.probe()
            link = await self._try_upload()
            copied = await self._try_copy_image(caps)

            subject = MAIL_SUBJECT.format(timestamp=self.report.display_timestamp)
            url = (
                f"mailto:{self.settings.email_address.strip()}"
                f"?subject={quote(subject, safe='')}&body={quote(self.render_text(link), safe='')}"
            )
            await self._hand_off(caps, url)

            if copied:
                message = "Photo copied to clipboard. Paste it into the email body."
            elif not link and not self.settings.upload_url:
                message = (
                    "The photo could not be attached automatically. Paste it manually, "
                    "or set an upload URL in settings so a photo link is included."
                )
            else:
                message = "Report opened in the mail client."
            return DeliveryOutcome(
                channel=Channel.MAIL, delivered=True, message=message,
                link=link, clipboard_image=copied,
            )

    async def send_spreadsheet(self) -> DeliveryOutcome:
        """Report text to clipboard, then open the configured spreadsheet."""
        with self._dispatching(Channel.SPREADSHEET):
            caps = self.capabilities.probe()
            copied = await self._try_copy_text(caps)

            if not self.settings.spreadsheet_url.strip():
                raise ConfigurationMissingError(
                    "Spreadsheet URL is not set in settings.", missing=["spreadsheet_url"]
                )
            await self._hand_off(caps, self.settings.spreadsheet_url.strip())

            if copied:
                message = "Report copied. Paste it into the spreadsheet."
            else:
                message = "Spreadsheet opened, but the clipboard is unavailable; use copy-text on another device."
            return DeliveryOutcome(
                channel=Channel.SPREADSHEET, delivered=True, message=message,
                link=self.report.uploaded_link,
            )

    async def share(self) -> DeliveryOutcome:
        """Photo as a file with the report text as caption, via the platform."""
        with self._dispatching(Channel.SHARE):
            caps = self.capabilities.probe()
            if not caps.share_files:
                raise CapabilityUnavailableError(
                    "This device cannot share images directly. Use a text channel instead."
                )

            image = self.report.image
            file = ExportArtifact(
                filename=f"Laporan-Kerja-{self.report.file_stamp}.jpg",
                media_type=image.media_type,
                content=image.payload,
            )
            await self.capabilities.share(file, title=SHARE_TITLE, text=self.render_text())
            return DeliveryOutcome(
                channel=Channel.SHARE, delivered=True, message="Report shared.",
                link=self.report.uploaded_link,
            )

    async def upload_to_cloud(self) -> DeliveryOutcome:
        """
        Explicit upload with feedback. A report that already has a link
        is a no-op success.

        Raises:
            ConfigurationMissingError: No upload URL configured.
            UploadFailedError: The upload failed.
        """
        with self._dispatching(Channel.CLOUD):
            if self.report.uploaded_link is not None:
                return DeliveryOutcome(
                    channel=Channel.CLOUD, delivered=True,
                    message="Report is already saved to the cloud.",
                    link=self.report.uploaded_link,
                )
            if not self.settings.upload_url:
                raise ConfigurationMissingError(
                    "Set the upload URL in settings to enable cloud saving.", missing=["upload_url"]
                )

            link = await self.ensure_uploaded()
            return DeliveryOutcome(
                channel=Channel.CLOUD, delivered=True,
                message="Report and photo saved to the cloud.", link=link,
            )

    async def copy_text(self) -> DeliveryOutcome:
        with self._dispatching(Channel.COPY):
            caps = self.capabilities.probe()
            if not caps.clipboard_text:
                raise CapabilityUnavailableError("Clipboard is not available.")
            await self.capabilities.copy_text(self.render_text())
            return DeliveryOutcome(channel=Channel.COPY, delivered=True, message="Report copied.")

    async def export_document(self) -> DeliveryOutcome:
        """Renders a fresh document on every call."""
        with self._dispatching(Channel.EXPORT):
            artifact = await asyncio.to_thread(self.renderer.render, self.report)
            return DeliveryOutcome(
                channel=Channel.EXPORT, delivered=True,
                message=f"Document ready: {artifact.filename}", artifact=artifact,
            )

    # --- Internal ---

    @contextmanager
    def _dispatching(self, channel: Channel) -> Iterator[None]:
        in_flight = self.report.guard.in_flight
        if channel in in_flight:
            raise ChannelBusyError(f"{channel.value} is already sending this report")
        in_flight.add(channel)
        try:
            yield
        finally:
            in_flight.discard(channel)

    async def _try_upload(self) -> str | None:
        try:
            return await self.ensure_uploaded()
        except UploadFailedError as e:
            logger.warning("Upload before hand-off failed, continuing without link: %s", e)
            return None

    async def _try_copy_image(self, caps: CapabilitySet) -> bool:
        if not caps.clipboard_image:
            return False
        image = self.report.image
        try:
            await self.capabilities.copy_image(image.payload, image.media_type)
            return True
        except Exception as e:
            logger.info("Clipboard image copy failed: %s", e)
            return False

    async def _try_copy_text(self, caps: CapabilitySet) -> bool:
        if not caps.clipboard_text:
            return False
        try:
            await self.capabilities.copy_text(self.render_text())
            return True
        except Exception as e:
            logger.info("Clipboard text copy failed: %s", e)
            return False

    async def _hand_off(self, caps: CapabilitySet, url: str) -> None:
        if not caps.open_url:
            raise CapabilityUnavailableError("No handler available to open the link.")
        await self.capabilities.open_url(url)
