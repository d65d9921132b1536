"""
Command-line entry point - wires the pipeline to a terminal host.

Parses arguments, builds lifecycle and delivery around the on-disk state,
runs one command, and prints a JSON result.

Never raises exceptions: all errors converted to JSON error payloads
and a non-zero exit code.
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any

from fieldreport.analysis import AnalysisGateway, GeminiOracle
from fieldreport.capabilities import DesktopCapabilities
from fieldreport.delivery import ReportDelivery
from fieldreport.lifecycle import ReportLifecycle
from fieldreport.state import JsonFileStore, LocalState
from fieldreport.models import (
    CapabilityUnavailableError,
    Channel,
    ChannelBusyError,
    ConfigurationMissingError,
    ErrorKind,
    ExportError,
    HistoryItemNotFoundError,
    LifecycleState,
    RawInput,
    Report,
    Settings,
    StorageError,
    UploadFailedError,
)
from fieldreport.config import STATE_DIR

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


# --- Entry Point ---

def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(args.command(args))
    except Exception:
        logger.exception("Command failed")
        return _error_response("INTERNAL_ERROR", "An unexpected error occurred")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fieldreport", description="Field work photo reports")
    parser.add_argument("--state-dir", default=STATE_DIR, help="where settings and history are kept")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(required=True)

    p = sub.add_parser("analyze", help="validate, analyse and record a photo")
    p.add_argument("path", type=Path)
    p.set_defaults(command=_cmd_analyze)

    p = sub.add_parser("history", help="list saved reports")
    p.set_defaults(command=_cmd_history)

    p = sub.add_parser("show", help="print a saved report")
    p.add_argument("id")
    p.set_defaults(command=_cmd_show)

    p = sub.add_parser("delete", help="delete a saved report")
    p.add_argument("id")
    p.set_defaults(command=_cmd_delete)

    p = sub.add_parser("restore", help="print the last session's report")
    p.set_defaults(command=_cmd_restore)

    p = sub.add_parser("dismiss", help="forget the last session")
    p.set_defaults(command=_cmd_dismiss)

    p = sub.add_parser("reset", help="start over: forget the current report, keep history")
    p.set_defaults(command=_cmd_reset)

    p = sub.add_parser("send", help="deliver a report")
    p.add_argument("--channel", choices=[c.value for c in Channel])
    p.add_argument("--id", help="history item (default: last session); its upload link is saved back to history")
    p.add_argument("--location", help="free-text location to use")
    p.set_defaults(command=_cmd_send)

    p = sub.add_parser("export", help="write the report as a PDF")
    p.add_argument("--id", help="history item (default: last session)")
    p.add_argument("--out", type=Path, help="output file or directory")
    p.set_defaults(command=_cmd_export)

    p = sub.add_parser("settings", help="show or change delivery settings")
    p.add_argument("--set", dest="updates", action="append", default=[], metavar="KEY=VALUE")
    p.set_defaults(command=_cmd_settings)

    return parser


def _build_lifecycle(args: argparse.Namespace) -> ReportLifecycle:
    local_state = LocalState(JsonFileStore(args.state_dir))
    return ReportLifecycle(AnalysisGateway(GeminiOracle()), local_state)


# --- Commands ---

async def _cmd_analyze(args: argparse.Namespace) -> int:
    try:
        data = args.path.read_bytes()
    except OSError as e:
        return _error_response("FILE_NOT_READABLE", str(e))

    media_type = mimetypes.guess_type(args.path.name)[0] or ""
    lifecycle = _build_lifecycle(args)
    state = await lifecycle.submit(RawInput(data=data, media_type=media_type))

    if state is LifecycleState.ERROR:
        code = {
            ErrorKind.LOCAL: "INVALID_IMAGE",
            ErrorKind.REJECTED: "CONTENT_REJECTED",
            ErrorKind.REMOTE: "ANALYSIS_UNREACHABLE",
        }[lifecycle.error_kind]
        return _error_response(code, lifecycle.error_message)

    delivery = ReportDelivery(lifecycle.report, lifecycle.settings, DesktopCapabilities())
    await delivery.location.auto_detect()
    await delivery.auto_upload()
    _save_report(lifecycle)

    return _success_response({
        "state": state.value,
        "history_id": lifecycle.history[0].id,
        "report": _report_data(lifecycle.report),
    })


async def _cmd_history(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    return _success_response({
        "items": [
            {
                "id": item.id,
                "saved_at": item.saved_at.isoformat(),
                "completion_percentage": item.report.completion_percentage,
                "summary": item.report.summary,
            }
            for item in lifecycle.history
        ],
        "restore_available": lifecycle.restore_offered,
    })


async def _cmd_show(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    try:
        report = lifecycle.load_history_item(args.id)
    except HistoryItemNotFoundError as e:
        return _error_response("NOT_FOUND", str(e))

    delivery = ReportDelivery(report, lifecycle.settings, DesktopCapabilities())
    return _success_response({"report": _report_data(report), "text": delivery.render_text()})


async def _cmd_delete(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    try:
        lifecycle.delete_history_item(args.id)
    except HistoryItemNotFoundError as e:
        return _error_response("NOT_FOUND", str(e))
    except StorageError as e:
        return _error_response("STORAGE_ERROR", str(e))
    return _success_response({"deleted": args.id, "remaining": len(lifecycle.history)})


async def _cmd_restore(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    if not lifecycle.restore_offered or not lifecycle.restore():
        return _error_response("NO_SESSION", "There is no previous report to restore")
    return _success_response({"state": lifecycle.state.value, "report": _report_data(lifecycle.report)})


async def _cmd_dismiss(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    if not lifecycle.restore_offered:
        return _error_response("NO_SESSION", "There is no previous report to dismiss")
    lifecycle.dismiss_restore()
    return _success_response({"restore_available": False})


async def _cmd_reset(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    if lifecycle.restore_offered:
        lifecycle.restore()
    try:
        lifecycle.reset()
    except StorageError as e:
        return _error_response("STORAGE_ERROR", str(e))
    return _success_response({"state": lifecycle.state.value, "history_items": len(lifecycle.history)})


async def _cmd_send(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    report = _select_report(lifecycle, args.id)
    if report is None:
        return _error_response("NO_REPORT", "No report selected; analyse a photo or pass --id")

    delivery = ReportDelivery(report, lifecycle.settings, DesktopCapabilities())
    if args.location:
        delivery.location.set_manual(args.location)
    else:
        await delivery.location.auto_detect()

    try:
        if args.channel:
            outcome = await delivery.dispatch(Channel(args.channel))
        else:
            outcome = await delivery.send()
    except ConfigurationMissingError as e:
        return _error_response("CONFIGURATION_MISSING", str(e), details={"missing": e.missing})
    except CapabilityUnavailableError as e:
        return _error_response("CAPABILITY_UNAVAILABLE", str(e))
    except UploadFailedError as e:
        return _error_response("UPLOAD_FAILED", str(e))
    except ExportError as e:
        return _error_response("EXPORT_FAILED", str(e))
    except ChannelBusyError as e:
        return _error_response("CHANNEL_BUSY", str(e))
    finally:
        _save_report(lifecycle)

    return _success_response(outcome.model_dump(mode="json", exclude={"artifact"}))


async def _cmd_export(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    report = _select_report(lifecycle, args.id)
    if report is None:
        return _error_response("NO_REPORT", "No report selected; analyse a photo or pass --id")

    delivery = ReportDelivery(report, lifecycle.settings, DesktopCapabilities())
    try:
        outcome = await delivery.export_document()
    except ExportError as e:
        return _error_response("EXPORT_FAILED", str(e))

    artifact = outcome.artifact
    target = args.out or Path(artifact.filename)
    if target.is_dir():
        target = target / artifact.filename
    try:
        target.write_bytes(artifact.content)
    except OSError as e:
        return _error_response("FILE_NOT_WRITABLE", str(e))
    return _success_response({"file": str(target), "size_bytes": len(artifact.content)})


async def _cmd_settings(args: argparse.Namespace) -> int:
    lifecycle = _build_lifecycle(args)
    if not args.updates:
        return _success_response(lifecycle.settings.model_dump())

    try:
        updates = _parse_updates(args.updates)
        settings = Settings.model_validate({**lifecycle.settings.model_dump(), **updates})
    except ValueError as e:
        return _error_response("INVALID_SETTING", str(e))

    try:
        lifecycle.update_settings(settings)
    except StorageError as e:
        return _error_response("STORAGE_ERROR", str(e))
    return _success_response(settings.model_dump())


# --- Helpers ---

def _select_report(lifecycle: ReportLifecycle, item_id: str | None) -> Report | None:
    """History item when given, otherwise the last session's report."""
    if item_id:
        try:
            return lifecycle.load_history_item(item_id)
        except HistoryItemNotFoundError:
            return None
    if lifecycle.restore_offered and lifecycle.restore():
        return lifecycle.report
    return None


def _save_report(lifecycle: ReportLifecycle) -> None:
    """Keeps location and upload link across runs, in the snapshot and in history."""
    try:
        lifecycle.save_session()
        lifecycle.save_history_item()
    except StorageError:
        logger.warning("Could not save the report's location and link", exc_info=True)


def _parse_updates(pairs: list[str]) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or key not in Settings.model_fields:
            raise ValueError(f"Unknown setting: {pair!r} (expected one of {', '.join(Settings.model_fields)})")
        updates[key] = value.strip().lower() in _TRUE_VALUES if key == "auto_upload" else value.strip()
    return updates


def _report_data(report: Report) -> dict[str, Any]:
    data = report.model_dump(mode="json", exclude={"image"})
    data["image"] = {"width": report.image.width, "height": report.image.height}
    return data


# --- Response Helpers ---

def _success_response(data: dict) -> int:
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0


def _error_response(code: str, message: str, details: dict | None = None) -> int:
    error_body: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details is not None:
        error_body["error"]["details"] = details
    print(json.dumps(error_body, indent=2, ensure_ascii=False), file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
