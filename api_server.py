#!/usr/bin/env python3
"""
JSON-RPC API Server for a desktop front end.

Reads JSON commands from stdin, calls the sorter modules, and writes JSON
responses to stdout. Designed to be spawned as a child process.

Protocol:
  - Each request is a single line of JSON
  - Each response is a single line of JSON
  - Format: {"id": "uuid", "method": "...", "params": {...}}
  - Response: {"id": "uuid", "result": {...}, "error": null}
  - While a run is in flight, progress is pushed with id "__progress__"
    and the final result with id "__done__"

Methods:
  - files:list - List supported documents under a folder
  - sort:start - Start a sorting run in the background
  - sort:cancel - Cancel the run in flight
  - sort:status - Progress of the current run, or its result when done
  - review:clusters - Group unresolved review documents
  - overrides:get / overrides:set / overrides:remove - Review overrides
  - rules:get / rules:validate / rules:save / rules:reset / rules:audit
  - export:zip / export:mirror - Write the last result as ZIP or folder
  - settings:get - Get all settings
  - settings:set - Update a setting
"""

import json
import sys
import threading
import traceback
from pathlib import Path
from typing import Any, Optional

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from document_files import collect_documents
from export import build_bundle_entries, build_report_entries, mirror_to_directory, write_zip
from review_clusters import cluster_review_files
from schedule_config import ConfigValidationError, validate_schedule_config
from settings import get_settings
from sort_pipeline import RUN_FAILED, CancelToken, RunResult, SortPipeline, SortProgress, rederive_run

VERSION = "1.0.0"

# Settings a client may change through settings:set
EDITABLE_SETTINGS = {
    "output_dir", "export_root", "review_root", "workers", "min_chars", "min_text_items",
    "rules_editor_name",
}

_output_lock = threading.Lock()
_run_lock = threading.Lock()
_run_state = {
    "thread": None,
    "token": None,
    "progress": None,
    "result": None,
}


def log_debug(msg: str):
    """Log debug messages to stderr (so they don't interfere with stdout JSON)."""
    print(f"[DEBUG] {msg}", file=sys.stderr, flush=True)


def send_response(request_id: str, result: Any = None, error: Optional[str] = None):
    """Send a JSON response to stdout."""
    response = {
        "id": request_id,
        "result": result,
        "error": error,
    }
    # Write as single line, then flush; the run thread writes too
    with _output_lock:
        print(json.dumps(response), flush=True)


def file_to_dict(entry) -> dict:
    data = entry.to_manifest_dict()
    data["text_sample"] = entry.text_sample
    data["failed"] = entry.failed
    return data


def result_to_dict(result: RunResult) -> dict:
    return {
        "status": result.status,
        "message": result.status_message,
        "completed": result.completed,
        "total": result.total,
        "summary": result.summary(),
        "files": [file_to_dict(f) for f in result.files],
    }


def progress_to_dict(progress: Optional[SortProgress]) -> Optional[dict]:
    if progress is None:
        return None
    return {"completed": progress.completed, "total": progress.total, "current": progress.current}


def require_result() -> RunResult:
    result = _run_state["result"]
    if result is None:
        raise ValueError("No finished sorting run yet")
    return result


def is_running() -> bool:
    thread = _run_state["thread"]
    return thread is not None and thread.is_alive()


# ==============================================================================
# FILES AND RUNS
# ==============================================================================

def handle_files_list(params: dict) -> dict:
    """List supported documents under a folder (recursively)."""
    folder = params.get("folder")
    if not folder:
        raise ValueError("folder parameter is required")

    documents = collect_documents(folder)
    files = [
        {
            "path": str(doc.source_path),
            "name": doc.name,
            "relative_path": doc.relative_path,
            "size": doc.source_path.stat().st_size,
        }
        for doc in documents
    ]
    return {"files": files, "count": len(files)}


def handle_sort_start(params: dict) -> dict:
    """Start sorting a folder; progress and the result arrive as pushed messages."""
    folder = params.get("folder")
    if not folder:
        raise ValueError("folder parameter is required")

    with _run_lock:
        if is_running():
            raise ValueError("A sorting run is already in progress")

        settings = get_settings()
        documents = collect_documents(folder)
        pipeline = SortPipeline(
            store=settings,
            workers=int(params.get("workers") or settings.workers),
            roots=settings.get_output_roots(),
        )
        token = CancelToken()

        def on_progress(progress: SortProgress):
            _run_state["progress"] = progress
            send_response("__progress__", result=progress_to_dict(progress))

        def target():
            try:
                result = pipeline.run(documents, cancel_token=token, on_progress=on_progress)
            except Exception as e:
                log_debug(f"Sorting run crashed: {traceback.format_exc()}")
                send_response("__done__", error=str(e))
                return
            _run_state["result"] = result
            send_response("__done__", result=result_to_dict(result))

        thread = threading.Thread(target=target, name="sort-run", daemon=True)
        _run_state.update(thread=thread, token=token, progress=None)
        thread.start()

    return {"started": True, "total": len(documents)}


def handle_sort_cancel(params: dict) -> dict:
    token = _run_state["token"]
    if token is None or not is_running():
        return {"cancelled": False}
    token.cancel()
    return {"cancelled": True}


def handle_sort_status(params: dict) -> dict:
    running = is_running()
    result = _run_state["result"]
    return {
        "running": running,
        "progress": progress_to_dict(_run_state["progress"]),
        "result": result_to_dict(result) if result is not None and not running else None,
    }


def handle_review_clusters(params: dict) -> dict:
    clusters = cluster_review_files(require_result().files)
    return {
        "clusters": [
            {
                "label": cluster.label,
                "tokens": cluster.tokens,
                "files": [f.relative_path for f in cluster.files],
            }
            for cluster in clusters
        ]
    }


# ==============================================================================
# OVERRIDES
# ==============================================================================

def _rederive(overrides: dict) -> dict:
    """Re-apply overrides to the last result (if any) without re-reading files."""
    result = _run_state["result"]
    if result is None or is_running():
        return {"overrides": overrides, "result": None}
    result = rederive_run(result, overrides)
    _run_state["result"] = result
    return {"overrides": overrides, "result": result_to_dict(result)}


def handle_overrides_get(params: dict) -> dict:
    return {"overrides": get_settings().load_review_overrides()}


def handle_overrides_set(params: dict) -> dict:
    digest = params.get("hash")
    schedule_id = params.get("schedule")
    if not digest or not schedule_id:
        raise ValueError("hash and schedule parameters are required")
    return _rederive(get_settings().set_review_override(digest, schedule_id))


def handle_overrides_remove(params: dict) -> dict:
    digest = params.get("hash")
    if not digest:
        raise ValueError("hash parameter is required")
    return _rederive(get_settings().remove_review_override(digest))


# ==============================================================================
# RULES
# ==============================================================================

def handle_rules_get(params: dict) -> dict:
    settings = get_settings()
    return {
        "config": settings.load_schedule_config(),
        "custom": settings.has_custom_schedule_config(),
        "editor_name": settings.rules_editor_name,
    }


def handle_rules_validate(params: dict) -> dict:
    _, errors = validate_schedule_config(params.get("config"))
    return {"valid": not errors, "errors": errors}


def handle_rules_save(params: dict) -> dict:
    settings = get_settings()
    try:
        config = settings.save_schedule_config(
            params.get("config"),
            summary=params.get("summary") or "Updated rules",
            editor_name=params.get("editor_name"),
        )
    except ConfigValidationError as e:
        return {"saved": False, "errors": e.errors}
    return {"saved": True, "errors": [], "config": config}


def handle_rules_reset(params: dict) -> dict:
    settings = get_settings()
    settings.reset_schedule_config(params.get("editor_name"))
    return {"config": settings.load_schedule_config()}


def handle_rules_audit(params: dict) -> dict:
    return {"entries": get_settings().load_rules_audit_log()}


# ==============================================================================
# EXPORT AND SETTINGS
# ==============================================================================

def _export_entries(params: dict):
    result = require_result()
    if result.status == RUN_FAILED:
        # duplicates of an abandoned first-seen document have no decision to mirror
        raise ValueError(f"Cannot export a failed run: {result.error}")
    if params.get("reports_only"):
        return build_report_entries(result)
    return build_bundle_entries(result)


def handle_export_zip(params: dict) -> dict:
    dest = params.get("dest")
    if not dest:
        raise ValueError("dest parameter is required")
    path = write_zip(_export_entries(params), dest)
    return {"path": str(path)}


def handle_export_mirror(params: dict) -> dict:
    folder = params.get("folder") or get_settings().output_dir
    written = mirror_to_directory(_export_entries(params), folder)
    return {"folder": str(folder), "count": len(written)}


def handle_settings_get(params: dict) -> dict:
    """Get all settings."""
    settings = get_settings()
    data = settings.to_dict()
    data["output_dir"] = settings.output_dir
    data["workers"] = settings.workers
    return data


def handle_settings_set(params: dict) -> dict:
    """Update a setting."""
    key = params.get("key")
    value = params.get("value")

    if not key:
        raise ValueError("key parameter is required")
    if key not in EDITABLE_SETTINGS:
        raise ValueError(f"Setting cannot be changed here: {key}")

    settings = get_settings()
    settings.set(key, value)
    return {"success": True, "key": key, "value": value}


METHODS = {
    "files:list": handle_files_list,
    "sort:start": handle_sort_start,
    "sort:cancel": handle_sort_cancel,
    "sort:status": handle_sort_status,
    "review:clusters": handle_review_clusters,
    "overrides:get": handle_overrides_get,
    "overrides:set": handle_overrides_set,
    "overrides:remove": handle_overrides_remove,
    "rules:get": handle_rules_get,
    "rules:validate": handle_rules_validate,
    "rules:save": handle_rules_save,
    "rules:reset": handle_rules_reset,
    "rules:audit": handle_rules_audit,
    "export:zip": handle_export_zip,
    "export:mirror": handle_export_mirror,
    "settings:get": handle_settings_get,
    "settings:set": handle_settings_set,
}


def handle_request(request: dict) -> None:
    """Handle a single JSON-RPC request."""
    request_id = request.get("id", "unknown")
    method = request.get("method")
    params = request.get("params") or {}

    if not method:
        send_response(request_id, error="method is required")
        return

    if method not in METHODS:
        send_response(request_id, error=f"Unknown method: {method}")
        return

    try:
        result = METHODS[method](params)
        send_response(request_id, result=result)
    except Exception as e:
        log_debug(f"Error handling {method}: {traceback.format_exc()}")
        send_response(request_id, error=str(e))


def main():
    """Main loop: read JSON from stdin, process, write JSON to stdout."""
    log_debug("API server starting...")

    # Send ready signal
    send_response("__ready__", result={"status": "ready", "version": VERSION})

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue

        try:
            request = json.loads(line)
            handle_request(request)
        except json.JSONDecodeError as e:
            log_debug(f"Invalid JSON: {e}")
            send_response("__error__", error=f"Invalid JSON: {e}")
        except Exception as e:
            log_debug(f"Unexpected error: {traceback.format_exc()}")
            send_response("__error__", error=f"Server error: {e}")


if __name__ == "__main__":
    main()
