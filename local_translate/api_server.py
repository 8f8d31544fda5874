# Local HTTP/WebSocket API for the translation engine.

from __future__ import annotations

import argparse
import asyncio
from collections import OrderedDict
import logging
import os
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn
import yaml

from local_translate.history.store import HistoryStore
from local_translate.pipelines.base import (
    TERMINAL_EVENTS,
    TextUnit,
    TranslationEvent,
    TranslationRequest,
)
from local_translate.pipelines.lifecycle import DuplicateRequestError, RequestLifecycleManager
from local_translate.providers.base import ProviderError, TranslationCancelled
from local_translate.registry.profile_store import InvalidSettingsError, ProfileStore
from local_translate.registry.settings import (
    REDACTED,
    ProfileNotFoundError,
    Settings,
    TranslationProfile,
)
from local_translate.utils.api_stats_protocol import generate_request_id
from local_translate.validation import is_loopback_host, validate_profile

logger = logging.getLogger(__name__)

MAX_TRACKED_REQUESTS = 200


class TranslateRequest(BaseModel):
    text: str
    id: Optional[str] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    profile_id: Optional[str] = None
    stream: bool = False
    wait: bool = False


class TranslatePageRequest(BaseModel):
    texts: List[str]
    unit_ids: Optional[List[str]] = None
    id: Optional[str] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    profile_id: Optional[str] = None
    wait: bool = False


class SaveProfileRequest(BaseModel):
    data: Dict[str, Any]
    allow_overwrite: bool = False


class SettingsUpdate(BaseModel):
    active_profile_id: Optional[str] = None
    retry_count: Optional[int] = Field(default=None, ge=0)
    retry_interval_ms: Optional[int] = Field(default=None, ge=0)
    streaming_enabled: Optional[bool] = None
    history_enabled: Optional[bool] = None
    history_max_items: Optional[int] = Field(default=None, ge=1)


class EventLog:
    """Keeps the events of the most recent requests for polling and watching clients."""

    def __init__(self, max_requests: int = MAX_TRACKED_REQUESTS):
        self.max_requests = max_requests
        self._events: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        self._watchers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {}
        self._lock = threading.Lock()

    def __call__(self, event: TranslationEvent) -> None:
        payload = event.to_dict()
        with self._lock:
            bucket = self._events.get(event.request_id)
            if bucket is None:
                bucket = []
                self._events[event.request_id] = bucket
                while len(self._events) > self.max_requests:
                    self._events.popitem(last=False)
            bucket.append(payload)
            watchers = list(self._watchers.get(event.request_id, []))
        for watcher in watchers:
            watcher(payload)

    def watch(
        self, request_id: str, watcher: Callable[[Dict[str, Any]], None]
    ) -> Tuple[List[Dict[str, Any]], Callable[[], None]]:
        """Return the events so far and register ``watcher`` for the rest, atomically."""
        with self._lock:
            snapshot = list(self._events.get(request_id) or [])
            self._watchers.setdefault(request_id, []).append(watcher)

        def _remove() -> None:
            with self._lock:
                watchers = self._watchers.get(request_id, [])
                if watcher in watchers:
                    watchers.remove(watcher)
                if not watchers:
                    self._watchers.pop(request_id, None)

        return snapshot, _remove

    def events(self, request_id: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            bucket = self._events.get(request_id)
            return list(bucket) if bucket is not None else None


def _status(events: List[Dict[str, Any]]) -> str:
    for event in reversed(events):
        if event["type"] in TERMINAL_EVENTS:
            return event["type"]
    return "running"


def _profile_summary(profile: TranslationProfile) -> Dict[str, Any]:
    check = validate_profile(profile.to_dict())
    return {
        **profile.public_dict(),
        "validation": {"ok": check.ok, "errors": check.errors, "warnings": check.warnings},
    }


def _settings_view(settings: Settings) -> Dict[str, Any]:
    return {
        **settings.to_dict(),
        "profiles": [_profile_summary(profile) for profile in settings.profiles],
    }


def _stored_api_key(store: ProfileStore, profile_id: str) -> str:
    """Key kept on disk, for saves that send back the redacted placeholder."""
    try:
        return str(store.load_profile(profile_id).get("api_key") or "")
    except (OSError, ValueError, yaml.YAMLError):
        return ""


def _submit(manager: RequestLifecycleManager, request: TranslationRequest):
    try:
        return manager.submit(request)
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="profile_not_found") from exc
    except DuplicateRequestError as exc:
        raise HTTPException(status_code=409, detail="duplicate_request") from exc
    except InvalidSettingsError as exc:
        logger.error(f"Cannot load settings: {exc}")
        raise HTTPException(status_code=500, detail="invalid_settings") from exc


def _wait_for(handle: Any) -> Any:
    try:
        return handle.result()
    except TranslationCancelled as exc:
        raise HTTPException(status_code=409, detail={"code": exc.code}) from exc
    except ProviderError as exc:
        raise HTTPException(
            status_code=502, detail={"code": exc.code, "message": str(exc)}
        ) from exc


def create_app(manager: RequestLifecycleManager, store: ProfileStore) -> FastAPI:
    app = FastAPI(title="Local Translate API", version="0.1.0")
    event_log = EventLog()
    manager.subscribe(event_log)

    @app.middleware("http")
    async def local_only_middleware(request: Request, call_next):
        client = request.client
        host = client.host if client else ""
        if not is_loopback_host(host):
            return JSONResponse(status_code=403, content={"detail": "forbidden"})
        return await call_next(request)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "active": len(manager.active_requests())}

    @app.post("/translate")
    def translate(payload: TranslateRequest) -> Dict[str, Any]:
        try:
            request = TranslationRequest(
                id=payload.id or generate_request_id(),
                text=payload.text,
                source_language=payload.source_language,
                target_language=payload.target_language,
                profile_id=payload.profile_id,
                stream=payload.stream,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_request") from exc
        handle = _submit(manager, request)
        if not payload.wait:
            return {"ok": True, "request_id": handle.request_id}
        result = _wait_for(handle)
        return {"ok": True, "request_id": handle.request_id, "result": result.to_dict()}

    @app.post("/translate/page")
    def translate_page(payload: TranslatePageRequest) -> Dict[str, Any]:
        unit_ids = payload.unit_ids or [str(index) for index in range(len(payload.texts))]
        if len(unit_ids) != len(payload.texts):
            raise HTTPException(status_code=400, detail="invalid_request")
        request = TranslationRequest(
            id=payload.id or generate_request_id(),
            units=[TextUnit(unit_id=u, text=t) for u, t in zip(unit_ids, payload.texts)],
            source_language=payload.source_language or "auto",
            target_language=payload.target_language,
            profile_id=payload.profile_id,
        )
        handle = _submit(manager, request)
        if not payload.wait:
            return {"ok": True, "request_id": handle.request_id}
        translated = _wait_for(handle)
        return {
            "ok": True,
            "request_id": handle.request_id,
            "unit_ids": unit_ids,
            "translated_texts": translated,
        }

    @app.get("/translate/{request_id}")
    def translation_status(request_id: str) -> Dict[str, Any]:
        events = event_log.events(request_id)
        if events is None:
            raise HTTPException(status_code=404, detail="not_found")
        return {"request_id": request_id, "status": _status(events), "events": events}

    @app.delete("/translate/{request_id}")
    def cancel_translation(request_id: str) -> Dict[str, Any]:
        return {"ok": True, "cancelled": manager.cancel(request_id)}

    @app.get("/history")
    def list_history(
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> Dict[str, Any]:
        history = manager.history
        if history is None:
            return {"total": 0, "items": []}
        items = history.get_history_entries(limit=limit, offset=offset)
        return {
            "total": history.count_history_entries(),
            "items": [item.to_dict() for item in items],
        }

    @app.delete("/history")
    def clear_history() -> Dict[str, Any]:
        if manager.history is not None:
            manager.history.clear_history()
        return {"ok": True}

    @app.delete("/history/{entry_id}")
    def remove_history_entry(entry_id: str) -> Dict[str, Any]:
        if manager.history is None or not manager.history.remove_history_entry(entry_id):
            raise HTTPException(status_code=404, detail="not_found")
        return {"ok": True}

    def _current_settings() -> Settings:
        try:
            return store.load_settings()
        except InvalidSettingsError as exc:
            logger.error(f"Cannot load settings: {exc}")
            raise HTTPException(status_code=500, detail="invalid_settings") from exc

    @app.get("/settings")
    def settings() -> Dict[str, Any]:
        return _settings_view(_current_settings())

    @app.put("/settings")
    def update_settings(payload: SettingsUpdate) -> Dict[str, Any]:
        try:
            current = store.load_settings().to_dict()
        except InvalidSettingsError as exc:
            logger.warning(f"Replacing unreadable settings: {exc}")
            current = {}
        merged = {**current, **payload.model_dump(exclude_none=True)}
        updated = Settings.from_dict(merged, store.load_translation_profiles())
        store.save_settings(updated)
        return _settings_view(updated)

    @app.get("/profiles")
    def list_profiles() -> List[Dict[str, str]]:
        return [
            {"id": ref.profile_id, "name": ref.name, "filename": os.path.basename(ref.path)}
            for ref in store.list_profiles()
        ]

    @app.get("/profiles/{profile_id}")
    def load_profile(profile_id: str) -> Dict[str, Any]:
        if not ProfileStore.is_safe_profile_id(profile_id):
            raise HTTPException(status_code=400, detail="invalid_id")
        try:
            data = store.load_profile(profile_id)
        except FileNotFoundError as exc:
            raise HTTPException(status_code=404, detail="not_found") from exc
        except (ValueError, yaml.YAMLError) as exc:
            raise HTTPException(status_code=400, detail="invalid_yaml") from exc
        return _profile_summary(TranslationProfile.from_dict(data))

    @app.post("/profiles/{profile_id}")
    def save_profile(profile_id: str, payload: SaveProfileRequest) -> Dict[str, Any]:
        if not ProfileStore.is_safe_profile_id(profile_id):
            raise HTTPException(status_code=400, detail="invalid_id")
        data = dict(payload.data)
        if data.get("id") and str(data["id"]).strip() != profile_id:
            raise HTTPException(status_code=400, detail="invalid_id")
        data["id"] = profile_id
        if data.get("api_key") == REDACTED:
            data["api_key"] = _stored_api_key(store, profile_id)

        result = validate_profile(data)
        if result.errors:
            raise HTTPException(
                status_code=400,
                detail={"errors": result.errors, "warnings": result.warnings},
            )
        try:
            store.save_profile(data, allow_overwrite=payload.allow_overwrite)
        except FileExistsError as exc:
            raise HTTPException(status_code=400, detail="profile_exists") from exc
        return {"ok": True, "id": profile_id, "warnings": result.warnings}

    @app.delete("/profiles/{profile_id}")
    def delete_profile(profile_id: str) -> Dict[str, Any]:
        if not ProfileStore.is_safe_profile_id(profile_id):
            raise HTTPException(status_code=400, detail="invalid_id")
        return {"ok": True, "deleted": store.delete_profile(profile_id)}

    @app.websocket("/ws/{request_id}")
    async def stream_events(websocket: WebSocket, request_id: str) -> None:
        client = websocket.client
        if not is_loopback_host(client.host if client else ""):
            await websocket.close(code=1008)
            return
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

        def _forward(payload: Dict[str, Any]) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, payload)

        snapshot, stop_watching = event_log.watch(request_id, _forward)
        try:
            for event in snapshot:
                await websocket.send_json(event)
            if snapshot and _status(snapshot) != "running":
                await websocket.close()
                return
            while True:
                event = await queue.get()
                await websocket.send_json(event)
                if event["type"] in TERMINAL_EVENTS:
                    await websocket.close()
                    return
        except WebSocketDisconnect:
            logger.debug(f"WebSocket for {request_id} disconnected")
        finally:
            stop_watching()

    return app


def main() -> int:
    parser = argparse.ArgumentParser(description="Local Translate API Server")
    parser.add_argument("--profiles-dir", required=True, help="Base dir for profiles and settings")
    parser.add_argument("--history-file", default=None, help="JSON file for translation history")
    parser.add_argument("--port", type=int, default=48322)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = ProfileStore(args.profiles_dir)
    store.seed_defaults(Path(__file__).resolve().parent / "profiles")
    settings = store.load_settings()
    history_file = args.history_file or str(Path(args.profiles_dir) / "history.json")
    history = HistoryStore(history_file, max_items=settings.history_max_items)
    manager = RequestLifecycleManager(settings_loader=store.load_settings, history=history)

    app = create_app(manager, store)
    try:
        uvicorn.run(app, host="127.0.0.1", port=args.port, log_level="warning")
    finally:
        manager.shutdown(wait=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
