from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import requests

from ..config import AppConfig
from ..utils.retry import exponential_backoff, with_retries
from .store import (
    RawRecord,
    TelemetryPermissionError,
    TelemetryStore,
    TelemetryStoreError,
    Unsubscribe,
    WatchCallback,
    newest_first,
)


logger = logging.getLogger(__name__)

READINGS_PATH = "users/{uid}/accelerometer_readings"


class FirebaseTelemetryStore(TelemetryStore):
    """Firebase Realtime Database binding over its REST API.

    Reads use ``orderBy="timestamp"`` with ``limitToLast``; watch mode uses
    the database's server-sent-event stream and re-queries on every change.
    """

    def __init__(
        self,
        db_url: str,
        user_id: str = "simulator_user",
        auth_token: Optional[str] = None,
        timeout_sec: float = 10.0,
        max_retries: int = 2,
        backoff_base_sec: float = 0.2,
        backoff_cap_sec: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = db_url.rstrip("/")
        self.path = READINGS_PATH.format(uid=user_id)
        self.auth_token = auth_token
        self.timeout_sec = timeout_sec
        self.max_retries = max(1, max_retries)
        self.backoff_base_sec = backoff_base_sec
        self.backoff_cap_sec = backoff_cap_sec
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": "AccelMonitor/0.1"})

    @classmethod
    def from_config(cls, config: AppConfig) -> "FirebaseTelemetryStore":
        rt = config.runtime
        return cls(
            db_url=config.env.FIREBASE_DB_URL or "",
            user_id=config.env.SIMULATOR_USER_ID,
            auth_token=config.env.FIREBASE_AUTH_TOKEN,
            timeout_sec=rt.network_timeout_sec,
            max_retries=rt.max_retries,
            backoff_base_sec=rt.backoff_base_sec,
            backoff_cap_sec=rt.backoff_cap_sec,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.path}.json"

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params = dict(extra)
        if self.auth_token:
            params["auth"] = self.auth_token
        return params

    def _request(self, method: str, **kwargs: Any) -> Any:
        def call() -> Any:
            try:
                resp = self.session.request(method, self.url, timeout=self.timeout_sec, **kwargs)
            except requests.RequestException as exc:
                raise TelemetryStoreError(f"{method} {self.path} failed: {exc}") from exc
            if resp.status_code in (401, 403):
                raise TelemetryPermissionError(
                    f"Permission denied for {self.path} (HTTP {resp.status_code})"
                )
            try:
                resp.raise_for_status()
            except requests.HTTPError as exc:
                raise TelemetryStoreError(f"{method} {self.path} failed: {exc}") from exc
            return resp.json() if resp.content else None

        return with_retries(
            call,
            max_attempts=self.max_retries,
            base_seconds=self.backoff_base_sec,
            cap_seconds=self.backoff_cap_sec,
            retry_on=(TelemetryStoreError,),
            give_up_on=(TelemetryPermissionError,),
        )

    def query(self, limit: int) -> List[RawRecord]:
        payload = self._request(
            "GET", params=self._params(orderBy='"timestamp"', limitToLast=int(limit))
        )
        if not payload:
            return []
        if not isinstance(payload, dict):
            raise TelemetryStoreError(f"Unexpected payload type {type(payload).__name__}")
        records: List[RawRecord] = []
        for key, value in payload.items():
            if isinstance(value, dict):
                records.append(dict(value, id=key))
        return newest_first(records)[:limit]

    def append(self, record: Mapping[str, Any]) -> str:
        body = {k: v for k, v in record.items() if k != "id"}
        payload = self._request("POST", params=self._params(), json=body)
        return str((payload or {}).get("name", ""))

    def clear(self) -> None:
        self._request("DELETE", params=self._params())

    def watch(self, on_change: WatchCallback, limit: int = 20) -> Unsubscribe:
        stop = threading.Event()
        state: Dict[str, Optional[requests.Response]] = {"resp": None}

        def run() -> None:
            attempt = 0
            while not stop.is_set():
                try:
                    resp = self.session.get(
                        self.url,
                        params=self._params(),
                        headers={"Accept": "text/event-stream"},
                        stream=True,
                        timeout=(self.timeout_sec, None),
                    )
                    if resp.status_code in (401, 403):
                        logger.error("Permission denied opening telemetry stream", extra={"path": self.path})
                        return
                    resp.raise_for_status()
                    state["resp"] = resp
                    attempt = 0
                    if not self._consume_stream(resp, on_change, limit, stop):
                        return
                except requests.RequestException as exc:
                    if stop.is_set():
                        return
                    attempt += 1
                    delay = exponential_backoff(attempt, self.backoff_base_sec, self.backoff_cap_sec)
                    logger.warning("Telemetry stream dropped, reconnecting", extra={"error": str(exc), "delay": delay})
                    stop.wait(timeout=delay)

        thread = threading.Thread(target=run, name="FirebaseWatch", daemon=True)
        thread.start()

        def unsubscribe() -> None:
            stop.set()
            resp = state["resp"]
            if resp is not None:
                resp.close()

        return unsubscribe

    def _consume_stream(
        self,
        resp: requests.Response,
        on_change: WatchCallback,
        limit: int,
        stop: threading.Event,
    ) -> bool:
        """Dispatch stream events; return False when the stream must not be reopened."""
        event = ""
        for line in resp.iter_lines(decode_unicode=True):
            if stop.is_set():
                return False
            if not line:
                continue
            if line.startswith("event:"):
                event = line.split(":", 1)[1].strip()
                if event in ("cancel", "auth_revoked"):
                    logger.error("Telemetry stream closed by server", extra={"event": event})
                    return False
                continue
            if line.startswith("data:") and event in ("put", "patch"):
                try:
                    records = self.query(limit)
                except TelemetryStoreError as exc:
                    logger.error("Failed to refresh after stream event", extra={"error": str(exc)})
                    continue
                try:
                    on_change(records)
                except Exception:  # noqa: BLE001
                    logger.exception("Error in store watch callback")
        return not stop.is_set()
