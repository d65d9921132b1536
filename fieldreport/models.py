"""
Domain models for the field work reporting pipeline.

All Pydantic models in one place. Imported by validator, transcoder,
analysis, lifecycle, delivery, and state modules. Single source of truth
for data contracts.
"""

import asyncio
import base64
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field


# --- Domain Enums ---

class LifecycleState(str, Enum):
    """
    Externally visible lifecycle states. Inherits str so Pydantic
    serializes to "IDLE" / "SUCCESS" without extra conversion.
    """
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class AnalyzingPhase(str, Enum):
    """Sub-phase of ANALYZING, for progress display only."""
    COMPRESSING = "COMPRESSING"
    AWAITING_ANALYSIS = "AWAITING_ANALYSIS"


class ErrorKind(str, Enum):
    """Where an ERROR state came from: this device, the network, or the oracle."""
    LOCAL = "LOCAL"
    REMOTE = "REMOTE"
    REJECTED = "REJECTED"


class Channel(str, Enum):
    MESSAGING = "messaging"
    MAIL = "mail"
    SPREADSHEET = "spreadsheet"
    SHARE = "share"
    CLOUD = "cloud"
    COPY = "copy"
    EXPORT = "export"


# --- Intake Context ---

class RawInput(BaseModel):
    """Bytes as handed over by the caller. Never persisted."""
    data: bytes
    media_type: str

    @computed_field
    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ValidatedImage(BaseModel):
    """RawInput that passed every intake check, with measured dimensions."""
    raw: RawInput
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    format: str | None = None


class EncodedImage(BaseModel):
    """Re-encoded, size-bounded image as a self-describing data URL."""
    model_config = ConfigDict(frozen=True)

    data_url: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def media_type(self) -> str:
        header = self.data_url.split(",", 1)[0]
        return header.removeprefix("data:").split(";", 1)[0]

    @property
    def base64_payload(self) -> str:
        return self.data_url.split(",", 1)[1]

    @property
    def payload(self) -> bytes:
        return base64.b64decode(self.base64_payload)


# --- Analysis Context ---

class Accepted(BaseModel):
    """Oracle accepted the photo and produced a work report."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["accepted"] = "accepted"
    completion_percentage: float = Field(ge=0.0, le=100.0)
    summary: str
    details: list[str] = Field(min_length=3, max_length=3)
    recommendation: str


class Rejected(BaseModel):
    """Oracle refused the photo (stock photo, screenshot, render, ...)."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["rejected"] = "rejected"
    reason: str


AnalysisVerdict = Annotated[Union[Accepted, Rejected], Field(discriminator="kind")]


# --- Report Context ---

class DispatchGuard:
    """
    In-memory delivery state of one report: the upload lock, the
    channels currently dispatching it, and whether auto-upload ran.

    Shared by every orchestrator holding the same Report object. Never
    persisted; copies of a report start with a fresh guard.
    """

    def __init__(self):
        self.upload_lock = asyncio.Lock()
        self.in_flight: set[Channel] = set()
        self.auto_upload_attempted = False

    def __deepcopy__(self, memo):
        return DispatchGuard()

    def __eq__(self, other):
        return isinstance(other, DispatchGuard)

    __hash__ = None


class Report(BaseModel):
    """
    Finalized work report.

    `location` may be edited at any time. `uploaded_link` goes from
    None to a value at most once; use set_uploaded_link().
    """
    image: EncodedImage
    completion_percentage: float = Field(ge=0.0, le=100.0)
    summary: str
    details: list[str]
    recommendation: str
    timestamp: datetime
    location: str = ""
    uploaded_link: str | None = None

    _guard: DispatchGuard = PrivateAttr(default_factory=DispatchGuard)

    @classmethod
    def from_verdict(cls, image: EncodedImage, verdict: Accepted, timestamp: datetime) -> "Report":
        return cls(
            image=image,
            completion_percentage=verdict.completion_percentage,
            summary=verdict.summary,
            details=list(verdict.details),
            recommendation=verdict.recommendation,
            timestamp=timestamp,
        )

    @property
    def display_timestamp(self) -> str:
        return self.timestamp.strftime("%d/%m/%Y, %H.%M.%S")

    @property
    def file_stamp(self) -> str:
        """Timestamp safe for use in file names."""
        return self.timestamp.strftime("%d-%m-%Y-%H-%M-%S")

    @property
    def guard(self) -> DispatchGuard:
        return self._guard

    def set_uploaded_link(self, link: str) -> str:
        """Stores the upload link once. Returns the link now in effect."""
        if self.uploaded_link is None:
            self.uploaded_link = link
            return link
        if self.uploaded_link != link:
            raise UploadLinkAlreadySetError(
                f"Report already uploaded to {self.uploaded_link}"
            )
        return self.uploaded_link


class HistoryItem(BaseModel):
    """One entry of the local report history. Replaced whole, never mutated."""
    model_config = ConfigDict(frozen=True)

    id: str
    report: Report
    saved_at: datetime

    @property
    def image(self) -> EncodedImage:
        return self.report.image


class SessionSnapshot(BaseModel):
    """The last successful report, kept for reload recovery."""
    report: Report
    history_id: str | None = None

    @property
    def image(self) -> EncodedImage:
        return self.report.image


class Settings(BaseModel):
    """User-editable delivery configuration. Empty means not configured."""
    messaging_number: str = ""
    email_address: str = ""
    spreadsheet_url: str = ""
    upload_url: str = ""
    auto_upload: bool = False


# --- Delivery Context ---

class CapabilitySet(BaseModel):
    """What the platform can do right now. Probed once per operation."""
    clipboard_text: bool = False
    clipboard_image: bool = False
    share_files: bool = False
    geolocation: bool = False
    open_url: bool = False


class ExportArtifact(BaseModel):
    filename: str
    media_type: str
    content: bytes


class DeliveryOutcome(BaseModel):
    """What a channel did, for the invoker to present."""
    channel: Channel
    delivered: bool
    message: str
    link: str | None = None
    clipboard_image: bool | None = None
    artifact: ExportArtifact | None = None


# --- Exceptions ---

class ValidationError(Exception):
    """Image rejected by a local intake check."""
    pass


class UnsupportedTypeError(ValidationError):
    """Declared media type is not on the allow-list."""
    pass


class TooLargeError(ValidationError):
    """Image exceeds the maximum byte size."""
    pass


class CorruptImageError(ValidationError):
    """Image cannot be decoded."""
    pass


class TooSmallError(ValidationError):
    """Image resolution below the minimum (likely a thumbnail)."""

    def __init__(self, message: str, width: int, height: int):
        super().__init__(message)
        self.width = width
        self.height = height


class TranscodeError(Exception):
    """Re-encoding a validated image failed."""
    pass


class AnalysisUnreachableError(Exception):
    """Oracle call failed or returned an unusable reply."""
    pass


class ContentRejectedError(Exception):
    """Oracle explicitly rejected the image."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UploadFailedError(Exception):
    """Upload endpoint unreachable or returned an error."""
    pass


class UploadLinkAlreadySetError(Exception):
    """A second, different upload link was offered for the same report."""
    pass


class CapabilityUnavailableError(Exception):
    """Platform lacks the clipboard/share/geolocation facility needed."""
    pass


class ConfigurationMissingError(Exception):
    """A channel was invoked without its required settings."""

    def __init__(self, message: str, missing: list[str]):
        super().__init__(message)
        self.missing = missing


class ChannelBusyError(Exception):
    """The same channel is already dispatching this report."""
    pass


class ExportError(Exception):
    """Document renderer failed."""
    pass


class StorageError(Exception):
    """Local state could not be written."""
    pass


class HistoryItemNotFoundError(Exception):
    """Requested history item does not exist."""
    pass


class InvalidTransitionError(Exception):
    """Lifecycle action not allowed in the current state."""
    pass
