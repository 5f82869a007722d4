from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib import error, parse, request

from telemetry_hub.core.exceptions import AdapterFailure
from telemetry_hub.core.models import CollectedRecord, CollectionWindow
from telemetry_hub.sources.base import SourceAdapter
from telemetry_hub.sources.normalize import normalize_category, parse_field_map, record_from_row

logger = logging.getLogger(__name__)


def extract_from_path(payload: Any, path: str) -> Any:
    if not path:
        return payload
    node = payload
    for part in [x for x in path.split(".") if x.strip()]:
        if isinstance(node, dict):
            node = node.get(part)
            continue
        if isinstance(node, list):
            try:
                idx = int(part)
            except ValueError:
                return None
            if idx < 0 or idx >= len(node):
                return None
            node = node[idx]
            continue
        return None
    return node


class HttpJsonSourceAdapter(SourceAdapter):
    """
    Generic JSON API source.

    Auth modes:
      - bearer: static `api_token`
      - oauth: client-credentials against `token_url`; the access token is cached
        on the instance until shortly before it expires
      - none: no Authorization header
    Pagination follows `next_cursor_path` in the response body, up to `max_pages`.
    """

    def __init__(self, name: str, config: dict[str, Any]) -> None:
        self.name = name
        self.url = str(config.get("url", "")).strip()
        self.method = str(config.get("method", "GET")).upper()
        self.headers = dict(config.get("headers", {}))
        self.query_params = dict(config.get("query_params", {}))
        self.records_path = str(config.get("records_path", "")).strip()
        self.since_param = str(config.get("since_param", "since")).strip()
        self.until_param = str(config.get("until_param", "until")).strip()
        self.cursor_param = str(config.get("cursor_param", "cursor")).strip() or "cursor"
        self.next_cursor_path = str(config.get("next_cursor_path", "")).strip()
        self.max_pages = max(1, min(int(config.get("max_pages", 10)), 100))
        self.timeout_seconds = max(1, min(int(config.get("timeout_seconds", 30)), 300))

        self.api_token = str(config.get("api_token", "") or "").strip()
        self.token_url = str(config.get("token_url", "") or "").strip()
        self.client_id = str(config.get("client_id", "") or "").strip()
        self.client_secret = str(config.get("client_secret", "") or "").strip()
        self.scope = str(config.get("scope", "") or "").strip()
        default_auth = "oauth" if self.token_url else "bearer"
        self.auth = str(config.get("auth", default_auth)).strip().lower()
        self.token_refresh_margin_seconds = int(config.get("token_refresh_margin_seconds", 60))

        self.default_category = normalize_category(config.get("category"))
        self.field_map = parse_field_map(config.get("field_map"))

        self._access_token: str | None = None
        self._access_token_expires_at: float = 0.0

    def is_configured(self) -> bool:
        if not self.url:
            return False
        if self.auth == "none":
            return True
        if self.auth == "oauth":
            return bool(self.token_url and self.client_id and self.client_secret)
        return bool(self.api_token)

    def fetch_batch(self, window: CollectionWindow) -> list[CollectedRecord]:
        items: list[CollectedRecord] = []
        cursor: str | None = None
        for _ in range(self.max_pages):
            payload = self._request_page(window=window, cursor=cursor)
            rows = extract_from_path(payload, self.records_path) if self.records_path else payload
            if not isinstance(rows, list):
                raise AdapterFailure(f"{self.name}: response does not map to a list of records")
            for idx, row in enumerate(rows):
                if not isinstance(row, dict):
                    continue
                try:
                    items.append(
                        record_from_row(
                            row,
                            source=self.name,
                            field_map=self.field_map,
                            default_category=self.default_category,
                        )
                    )
                except ValueError as exc:
                    logger.warning("Source %s: skip row %s: %s", self.name, idx, exc)
            if not self.next_cursor_path:
                break
            next_cursor = extract_from_path(payload, self.next_cursor_path)
            if not next_cursor or str(next_cursor) == cursor:
                break
            cursor = str(next_cursor)
        return items

    def clear_token(self) -> None:
        self._access_token = None
        self._access_token_expires_at = 0.0

    def _authorization_header(self) -> dict[str, str]:
        if self.auth == "none":
            return {}
        if self.auth == "oauth":
            return {"Authorization": f"Bearer {self._get_access_token()}"}
        return {"Authorization": f"Bearer {self.api_token}"}

    def _get_access_token(self) -> str:
        now = time.monotonic()
        if self._access_token and now < self._access_token_expires_at:
            return self._access_token
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.scope:
            form["scope"] = self.scope
        req = request.Request(
            url=self.token_url,
            method="POST",
            data=parse.urlencode(form).encode("utf-8"),
            headers={"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"},
        )
        payload = self._open_json(req, what="token request")
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AdapterFailure(f"{self.name}: token endpoint returned no access_token")
        expires_in = int(payload.get("expires_in", 1800) or 1800)
        self._access_token = str(token)
        self._access_token_expires_at = now + max(0, expires_in - self.token_refresh_margin_seconds)
        return self._access_token

    def _request_page(self, *, window: CollectionWindow, cursor: str | None) -> Any:
        params = dict(self.query_params)
        if self.since_param:
            params[self.since_param] = window.start.isoformat()
        if self.until_param:
            params[self.until_param] = window.end.isoformat()
        if cursor:
            params[self.cursor_param] = cursor
        url = self.url
        query = parse.urlencode(params, doseq=True)
        if query:
            sep = "&" if "?" in url else "?"
            url = f"{url}{sep}{query}"
        req = request.Request(
            url=url,
            method=self.method,
            headers={"Accept": "application/json", **self.headers, **self._authorization_header()},
        )
        try:
            return self._open_json(req, what="records request")
        except AdapterFailure:
            if self.auth == "oauth":
                # Force a fresh token on the next call; a revoked token should not stick.
                self.clear_token()
            raise

    def _open_json(self, req: request.Request, *, what: str) -> Any:
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as resp:  # noqa: S310
                raw = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            raise AdapterFailure(f"{self.name}: {what} failed with HTTP {exc.code}") from exc
        except error.URLError as exc:
            raise AdapterFailure(f"{self.name}: {what} network error: {exc.reason}") from exc
        except OSError as exc:
            raise AdapterFailure(f"{self.name}: {what} I/O error: {exc}") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise AdapterFailure(f"{self.name}: {what} returned malformed JSON") from exc
