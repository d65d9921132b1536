"""
Report lifecycle - the state machine behind one reporting session.

IDLE → ANALYZING → SUCCESS | ERROR, back to IDLE only through reset().
Coordinates validator, transcoder, and analysis gateway, and keeps the
persisted history and last-session snapshot in step with SUCCESS.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable

from fieldreport.validator import validate_image
from fieldreport.transcoder import transcode_image
from fieldreport.analysis import AnalysisGateway
from fieldreport.state import LocalState
from fieldreport.models import (
    AnalyzingPhase,
    AnalysisUnreachableError,
    ContentRejectedError,
    ErrorKind,
    HistoryItem,
    HistoryItemNotFoundError,
    InvalidTransitionError,
    LifecycleState,
    RawInput,
    Rejected,
    Report,
    SessionSnapshot,
    Settings,
    StorageError,
    TranscodeError,
    ValidationError,
)
from fieldreport.config import CONNECTIVITY_ERROR_MESSAGE

logger = logging.getLogger(__name__)

Listener = Callable[["ReportLifecycle"], None]


def _now() -> datetime:
    return datetime.now().astimezone()


def _new_id() -> str:
    return uuid.uuid4().hex


class ReportLifecycle:
    """
    Drives intake → validation → transcoding → analysis → success/error.

    Persisted state is loaded once at construction. A snapshot found then
    is only offered (restore_offered); it is applied by restore().
    """

    def __init__(
        self,
        gateway: AnalysisGateway,
        local_state: LocalState,
        clock: Callable[[], datetime] = _now,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.gateway = gateway
        self.local_state = local_state
        self.clock = clock
        self.id_factory = id_factory

        self.state = LifecycleState.IDLE
        self.phase: AnalyzingPhase | None = None
        self.report: Report | None = None
        self.error: Exception | None = None
        self.error_message: str | None = None
        self.error_kind: ErrorKind | None = None

        self.settings = local_state.load_settings()
        self.history = local_state.load_history()
        self.restore_offered = local_state.load_session() is not None

        self._listeners: list[Listener] = []
        self._report_is_session = False
        self._history_id: str | None = None

    # --- Observers ---

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)

    # --- Transitions ---

    async def submit(self, raw: RawInput) -> LifecycleState:
        """
        Runs the full chain for one photo. Only allowed from IDLE.

        Returns the state the chain settled in (SUCCESS or ERROR).
        """
        if self.state is not LifecycleState.IDLE:
            raise InvalidTransitionError(f"Cannot submit while {self.state.value}")

        self.restore_offered = False
        self._enter(LifecycleState.ANALYZING, AnalyzingPhase.COMPRESSING)

        try:
            validated = await asyncio.to_thread(validate_image, raw)
            image = await asyncio.to_thread(transcode_image, validated)

            self.phase = AnalyzingPhase.AWAITING_ANALYSIS
            self._notify()

            verdict = await self.gateway.analyze(image)
        except ValidationError as e:
            logger.info("Image refused at intake: %s", e)
            return self._fail(e, str(e), ErrorKind.LOCAL)
        except (TranscodeError, AnalysisUnreachableError) as e:
            logger.warning("Analysis chain failed: %s", e)
            return self._fail(e, CONNECTIVITY_ERROR_MESSAGE, ErrorKind.REMOTE)
        except Exception as e:
            logger.exception("Unexpected error during analysis")
            return self._fail(e, CONNECTIVITY_ERROR_MESSAGE, ErrorKind.REMOTE)

        if isinstance(verdict, Rejected):
            logger.info("Image rejected by oracle: %s", verdict.reason)
            return self._fail(ContentRejectedError(verdict.reason), verdict.reason, ErrorKind.REJECTED)

        report = Report.from_verdict(image, verdict, self.clock())
        self._history_id = self._record_success(report)
        self.report = report
        self._report_is_session = True
        self._enter(LifecycleState.SUCCESS)
        return self.state

    def reset(self) -> None:
        """Back to IDLE. Forgets the last session, keeps history. No-op from IDLE."""
        if self.state is LifecycleState.ANALYZING:
            raise InvalidTransitionError("Cannot reset while analysis is running")
        if self.state is LifecycleState.IDLE:
            return

        self.report = None
        self._clear_error()
        self.restore_offered = False
        self.local_state.clear_session()
        self._enter(LifecycleState.IDLE)

    def restore(self) -> bool:
        """
        Accepts the startup offer: IDLE → SUCCESS from the snapshot.

        Never re-runs analysis or writes history. Returns False if the
        snapshot disappeared since startup.
        """
        if not self.restore_offered or self.state is not LifecycleState.IDLE:
            raise InvalidTransitionError("No session to restore")

        self.restore_offered = False
        snapshot = self.local_state.load_session()
        if snapshot is None:
            self._notify()
            return False

        self.report = snapshot.report
        self._report_is_session = True
        self._history_id = snapshot.history_id
        self._enter(LifecycleState.SUCCESS)
        return True

    def dismiss_restore(self) -> None:
        """Declines the startup offer and deletes the snapshot."""
        if not self.restore_offered or self.state is not LifecycleState.IDLE:
            raise InvalidTransitionError("No session to dismiss")
        self.restore_offered = False
        self.local_state.clear_session()
        self._notify()

    def load_history_item(self, item_id: str) -> Report:
        """Shows a stored report. Leaves the session snapshot alone."""
        if self.state is LifecycleState.ANALYZING:
            raise InvalidTransitionError("Cannot open history while analysis is running")

        item = self._find_history_item(item_id)
        self.report = item.report.model_copy(deep=True)
        self._report_is_session = False
        self._history_id = item.id
        self._clear_error()
        self._enter(LifecycleState.SUCCESS)
        return self.report

    def save_session(self) -> bool:
        """
        Re-saves the current report (edited location, upload link) as the
        session snapshot. Only for the session's own report, never for
        one opened from history.
        """
        if self.state is not LifecycleState.SUCCESS or not self._report_is_session:
            return False
        self.local_state.save_session(SessionSnapshot(report=self.report, history_id=self._history_id))
        return True

    def save_history_item(self) -> bool:
        """
        Writes the current report (location, upload link) back over the
        history entry it belongs to. False when it has none or the entry
        has since been deleted or evicted.
        """
        if self.state is not LifecycleState.SUCCESS or self._history_id is None:
            return False
        try:
            item = self._find_history_item(self._history_id)
        except HistoryItemNotFoundError:
            return False

        updated = item.model_copy(update={"report": self.report.model_copy(deep=True)})
        self.history = self.local_state.replace_history(updated)
        return True

    # --- History & settings ---

    def delete_history_item(self, item_id: str) -> None:
        self._find_history_item(item_id)
        self.history = self.local_state.delete_history(item_id)
        self._notify()

    def update_settings(self, settings: Settings) -> Settings:
        self.settings = self.local_state.save_settings(settings)
        return self.settings

    # --- Internal ---

    def _enter(self, state: LifecycleState, phase: AnalyzingPhase | None = None) -> None:
        logger.debug("Lifecycle %s → %s", self.state.value, state.value)
        self.state = state
        self.phase = phase
        self._notify()

    def _fail(self, error: Exception, message: str, kind: ErrorKind) -> LifecycleState:
        self.report = None
        self.error = error
        self.error_message = message
        self.error_kind = kind
        self._enter(LifecycleState.ERROR)
        return self.state

    def _clear_error(self) -> None:
        self.error = None
        self.error_message = None
        self.error_kind = None

    def _record_success(self, report: Report) -> str:
        """Writes history and snapshot before SUCCESS becomes visible. Returns the history id."""
        item = HistoryItem(id=self.id_factory(), report=report.model_copy(deep=True), saved_at=self.clock())
        try:
            self.history = self.local_state.add_history(item)
        except StorageError:
            logger.exception("Could not persist history; keeping it in memory")
            self.history = [item, *self.history][: self.local_state.max_history]

        try:
            self.local_state.save_session(SessionSnapshot(report=report, history_id=item.id))
        except StorageError:
            logger.exception("Could not persist session snapshot")
        return item.id

    def _find_history_item(self, item_id: str) -> HistoryItem:
        for item in self.history:
            if item.id == item_id:
                return item
        raise HistoryItemNotFoundError(f"History item {item_id} not found")
