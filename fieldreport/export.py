"""
Document export - renders a report and its photo to a downloadable PDF.

Pure function of the report: no upload, no clipboard, no memoization.
"""

import io
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

from fieldreport.models import ExportArtifact, ExportError, Report
from fieldreport.config import (
    EXPORT_FOOTER,
    EXPORT_MARGIN,
    EXPORT_MAX_IMAGE_HEIGHT,
    EXPORT_PAGE_SIZE,
    REPORT_TITLE,
)

_ACCENT = (14, 165, 233)
_MUTED = (100, 100, 100)
_TEXT = (0, 0, 0)


class DocumentRenderer(Protocol):
    def render(self, report: Report) -> ExportArtifact:
        ...


class PillowPdfRenderer:
    """A4 pages drawn with Pillow and saved as a multi-page PDF."""

    def __init__(self, page_size: tuple[int, int] = EXPORT_PAGE_SIZE, margin: int = EXPORT_MARGIN):
        self.page_size = page_size
        self.margin = margin
        self.title_font = ImageFont.load_default(size=40)
        self.heading_font = ImageFont.load_default(size=28)
        self.body_font = ImageFont.load_default(size=24)
        self.small_font = ImageFont.load_default(size=18)

    def render(self, report: Report) -> ExportArtifact:
        """
        Raises:
            ExportError: If the photo cannot be decoded or the PDF written.
        """
        try:
            pages = self._draw(report)
            buf = io.BytesIO()
            pages[0].save(buf, format="PDF", save_all=True, append_images=pages[1:])
        except Exception as e:
            raise ExportError(f"PDF generation failed: {e}") from e

        return ExportArtifact(
            filename=f"Laporan_{report.file_stamp}.pdf",
            media_type="application/pdf",
            content=buf.getvalue(),
        )

    # --- Layout ---

    def _draw(self, report: Report) -> list[Image.Image]:
        width, height = self.page_size
        safe_width = width - 2 * self.margin
        writer = _PageWriter(self.page_size, self.margin)

        writer.line(REPORT_TITLE, self.title_font, _ACCENT, gap=20)
        writer.line(f"Time: {report.display_timestamp}", self.body_font, _MUTED)
        writer.line(f"Progress: {report.completion_percentage:g}%", self.body_font, _MUTED)
        writer.line(f"Location: {report.location or '-'}", self.body_font, _MUTED, gap=30)

        photo = Image.open(io.BytesIO(report.image.payload)).convert("RGB")
        photo.thumbnail((safe_width, EXPORT_MAX_IMAGE_HEIGHT), Image.Resampling.LANCZOS)
        writer.page.paste(photo, (self.margin + (safe_width - photo.width) // 2, writer.y))
        writer.y += photo.height + 40

        writer.section("Executive Summary", [report.summary], self.heading_font, self.body_font)
        writer.section("Technical Details", [f"- {d}" for d in report.details], self.heading_font, self.body_font)
        writer.section("Recommendation", [report.recommendation], self.heading_font, self.body_font)

        for page in writer.pages:
            ImageDraw.Draw(page).text(
                (width // 2, height - self.margin // 2),
                EXPORT_FOOTER,
                font=self.small_font,
                fill=(150, 150, 150),
                anchor="ms",
            )
        return writer.pages


class _PageWriter:
    """Top-to-bottom text cursor that starts a new page when full."""

    def __init__(self, page_size: tuple[int, int], margin: int):
        self.page_size = page_size
        self.margin = margin
        self.max_width = page_size[0] - 2 * margin
        self.bottom = page_size[1] - 2 * margin
        self.pages: list[Image.Image] = []
        self.new_page()

    def new_page(self) -> None:
        self.page = Image.new("RGB", self.page_size, "white")
        self.pages.append(self.page)
        self.y = self.margin

    def line(self, text: str, font, fill, gap: int = 8) -> None:
        if self.y + font.size > self.bottom:
            self.new_page()
        ImageDraw.Draw(self.page).text((self.margin, self.y), text, font=font, fill=fill)
        self.y += font.size + gap

    def section(self, heading: str, paragraphs: list[str], heading_font, body_font) -> None:
        if self.y + heading_font.size + 2 * body_font.size > self.bottom:
            self.new_page()
        self.line(heading, heading_font, _TEXT, gap=12)
        for paragraph in paragraphs:
            for text in _wrap(ImageDraw.Draw(self.page), paragraph, body_font, self.max_width):
                self.line(text, body_font, _TEXT, gap=10)
        self.y += 20


def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> list[str]:
    """Greedy word wrap by rendered width."""
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines or [""]
