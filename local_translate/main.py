"""Command line entrypoint: translate a text or a file of lines."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
import sys
from typing import List

from local_translate.history.store import HistoryStore
from local_translate.pipelines.base import (
    EVENT_CANCELLED,
    EVENT_CHUNK,
    EVENT_COMPLETED,
    EVENT_ERROR,
    EVENT_PROGRESS,
    TextUnit,
    TranslationEvent,
    TranslationRequest,
)
from local_translate.pipelines.lifecycle import RequestLifecycleManager
from local_translate.providers.base import ProviderError, TranslationCancelled
from local_translate.registry.profile_store import InvalidSettingsError, ProfileStore
from local_translate.registry.settings import ProfileNotFoundError
from local_translate.utils.api_stats_protocol import generate_request_id
from local_translate.utils.log_protocol import (
    emit_chunk,
    emit_error,
    emit_progress,
    emit_result,
)

logger = logging.getLogger("local_translate")

WAIT_SLICE_SECONDS = 0.2


def emit_event(event: TranslationEvent) -> None:
    """Translate lifecycle events into the stdout JSON line protocol."""
    data = event.data
    if event.type == EVENT_CHUNK:
        emit_chunk(event.request_id, data.get("chunk", ""), data.get("accumulated", ""))
    elif event.type == EVENT_PROGRESS:
        emit_progress(
            event.request_id,
            completed=int(data.get("completed_count") or 0),
            total=int(data.get("total_count") or 0),
            unit_id=data.get("unit_id"),
            translated_text=data.get("translated_text"),
        )
    elif event.type == EVENT_COMPLETED:
        emit_result(
            event.request_id,
            translated_text=data.get("translated_text"),
            translated_texts=data.get("translated_texts"),
            unit_ids=data.get("unit_ids"),
            duration_ms=data.get("duration_ms"),
            stop_reason=data.get("stop_reason"),
        )
    elif event.type == EVENT_ERROR:
        emit_error(event.request_id, data.get("code", "UNKNOWN_ERROR"), data.get("message", ""))
    elif event.type == EVENT_CANCELLED:
        emit_error(event.request_id, "CANCELLED", "Translation was cancelled")


def _read_units(path: str) -> List[TextUnit]:
    with open(path, "r", encoding="utf-8") as f:
        lines = f.read().splitlines()
    return [TextUnit(unit_id=str(index + 1), text=line) for index, line in enumerate(lines)]


def main() -> int:
    parser = argparse.ArgumentParser(description="Local Translate")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Text to translate")
    source.add_argument("--file", help="Translate a file, one unit per line")
    parser.add_argument("--profiles-dir", required=True, help="Base dir for profiles and settings")
    parser.add_argument("--profile", help="Translation profile id")
    parser.add_argument("--source-lang", dest="source_lang", help="Source language (default: profile)")
    parser.add_argument("--target-lang", dest="target_lang", help="Target language (default: profile)")
    parser.add_argument("--stream", action="store_true", help="Stream partial output")
    parser.add_argument("--history-file", help="JSON file for translation history")
    parser.add_argument("--request-id", help="Request id (default: random)")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    if args.file and not os.path.exists(args.file):
        print(f"[Error] Input file not found: {args.file}", file=sys.stderr)
        return 1

    store = ProfileStore(args.profiles_dir)
    store.seed_defaults(Path(__file__).resolve().parent / "profiles")
    history_file = args.history_file or os.path.join(args.profiles_dir, "history.json")
    manager = RequestLifecycleManager(
        settings_loader=store.load_settings,
        history=HistoryStore(history_file),
        max_workers=1,
    )
    manager.subscribe(emit_event)

    request_id = args.request_id or generate_request_id()
    try:
        if args.file:
            request = TranslationRequest(
                id=request_id,
                units=_read_units(args.file),
                source_language=args.source_lang,
                target_language=args.target_lang,
                profile_id=args.profile,
            )
        else:
            request = TranslationRequest(
                id=request_id,
                text=args.text,
                source_language=args.source_lang,
                target_language=args.target_lang,
                profile_id=args.profile,
                stream=bool(args.stream),
            )
        handle = manager.submit(request)
        while not handle.wait(WAIT_SLICE_SECONDS):
            pass
        outcome = handle.result()
    except KeyboardInterrupt:
        logger.info("Interrupted, cancelling translation")
        manager.cancel(request_id)
        return 130
    except TranslationCancelled:
        return 130
    except ProfileNotFoundError as exc:
        emit_error(request_id, "API_ERROR", str(exc))
        return 1
    except InvalidSettingsError as exc:
        emit_error(request_id, "UNKNOWN_ERROR", str(exc))
        return 1
    except ProviderError as exc:
        logger.error(f"Translation failed ({exc.code}): {exc}")
        return 1
    finally:
        manager.shutdown(wait=False)

    if isinstance(outcome, list):
        print("\n".join(outcome))
    else:
        print(outcome.translated_text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
