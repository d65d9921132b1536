import os
"""
Configuration for the field work reporting pipeline.

All thresholds, limits, and fixed strings in one place.
Change here, not in business logic modules.
"""

# --- Validation ---

MAX_FILE_SIZE_MB: float = 10.0
MIN_RESOLUTION: int = 400
ALLOWED_MEDIA_TYPES: set[str] = {"image/jpeg", "image/png", "image/webp"}
MEDIA_TYPE_ALIASES: dict[str, str] = {"image/jpg": "image/jpeg"}

# --- Transcoding ---

MAX_DIMENSION: int = 1280
JPEG_QUALITY: float = 0.7
OUTPUT_MEDIA_TYPE: str = "image/jpeg"

# --- Analysis ---

GEMINI_API_KEY: str = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
REPORT_LANGUAGE: str = os.environ.get("FIELDREPORT_LANGUAGE", "Indonesian")
DEFAULT_REJECTION_REASON: str = "Image does not look like an original field photo."

ANALYSIS_INSTRUCTION: str = f"""\
You are a senior technical supervisor with digital forensics skills.

Your FIRST task is to verify that the photo is authentic before analysing it.

Step 1: CHECK IMAGE INTEGRITY AND AUTHENTICITY
Decide whether this is an ORIGINAL field photo taken with a worker's phone
camera, OR an image that was manipulated or taken from the internet.

REJECT THE IMAGE (isRejected: true) IF:
- It looks like a stock photo (studio-perfect lighting, posed models, too clean).
- It carries a watermark (Shutterstock, Getty, Alamy, 'Copyright' text).
- It looks like a screenshot of an image search (close buttons, carousel
  arrows, a search bar or other browser UI).
- It is a technical diagram, cartoon, 3D illustration or CAD render, not a real photo.
- It has very low resolution or heavy compression artifacts typical of a
  downloaded thumbnail.

Step 2: IF THE IMAGE IS ORIGINAL, ANALYSE THE WORK
1. Estimate the completion percentage (0-100).
2. Write a formal technical summary in {REPORT_LANGUAGE}.
3. List exactly 3 technical details.
4. Give one recommendation for the next step.

Return the response as JSON."""

# --- History & session ---

MAX_HISTORY_ITEMS: int = 5
SETTINGS_KEY: str = "settings"
HISTORY_KEY: str = "history"
SESSION_KEY: str = "last_session"
STATE_DIR: str = os.environ.get("FIELDREPORT_STATE_DIR", os.path.expanduser("~/.fieldreport"))

# --- Delivery ---

UPLOAD_TIMEOUT_SECONDS: float = float(os.environ.get("FIELDREPORT_UPLOAD_TIMEOUT", "30"))
UPLOAD_LINK_FIELDS: tuple[str, ...] = ("url", "imageUrl", "fileUrl", "link")
UPLOAD_LINK_PLACEHOLDER: str = "(Photo link available in the office Google Drive)"
MESSAGING_URL: str = "https://wa.me/{number}?text={text}"
MAPS_URL: str = "https://maps.google.com/?q={lat},{lon}"
REPORT_TITLE: str = "DAILY WORK REPORT"
MISSING_LOCATION_TEXT: str = "(Location not set)"
SHARE_TITLE: str = "Daily Work Report"
MAIL_SUBJECT: str = "Work Report - {timestamp}"

# --- Location ---

GEOLOCATION_TIMEOUT_SECONDS: float = 10.0
COORDINATE_PRECISION: int = 5

# --- Export ---

EXPORT_PAGE_SIZE: tuple[int, int] = (1240, 1754)  # A4 at 150 dpi
EXPORT_MARGIN: int = 90
EXPORT_MAX_IMAGE_HEIGHT: int = 720
EXPORT_FOOTER: str = "Generated by fieldreport"

# --- Lifecycle ---

CONNECTIVITY_ERROR_MESSAGE: str = (
    "Failed to analyse the image. Make sure the internet connection is stable and try again."
)
