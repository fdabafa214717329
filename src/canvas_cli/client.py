from __future__ import annotations

import asyncio
import json
import sys
from typing import Any
from urllib.parse import quote, urlsplit

import httpx

from .components import AssetLibrary, Component
from .config import DEFAULT_TIMEOUT_S
from .errors import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    CanvasError,
    NetworkError,
    NotFoundError,
    RequestSetupError,
)

API_BASE_PATH = "/canvas/api/v0"
TOKEN_PATH = "/oauth/token"
CLI_MARKER_HEADER = "X-Canvas-CLI"

# PHP can emit a fatal error page with a 200 status.
FATAL_ERROR_MARKERS = ("Fatal error",)
LOCAL_DEV_HOST_SUFFIX = "ddev.site"

REDACTED_AUTHORIZATION = "Bearer ********"

# Raised before anything reaches the wire.
_SETUP_ERRORS = (httpx.UnsupportedProtocol, httpx.InvalidURL, httpx.LocalProtocolError)
_HTTPX_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def _is_local_dev_site(site_url: str) -> bool:
    host = urlsplit(site_url).hostname or site_url
    return LOCAL_DEV_HOST_SUFFIX in host


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _status_detail(resp: httpx.Response) -> str:
    data = _json_or_none(resp)
    if isinstance(data, dict):
        for key in ("message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return f"Request failed with status code {resp.status_code}"


def classify_error(exc: Exception, *, site_url: str) -> CanvasError:
    """
    Map an httpx failure to the CLI's error taxonomy.

    Status errors become ApiError subclasses; a request that went out without an answer
    becomes NetworkError; one that never left becomes RequestSetupError.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        resp = exc.response
        status = resp.status_code
        body = resp.text
        if status == 401:
            return AuthenticationError(
                "Authentication failed. Please check your client ID and secret.",
                status_code=status,
                body=body,
            )
        if status == 403:
            return AuthorizationError(
                "You do not have permission to perform this action. Check your configured scope.",
                status_code=status,
                body=body,
            )
        cls = NotFoundError if status == 404 else ApiError
        data = _json_or_none(resp)
        if isinstance(data, dict):
            parts = [str(data[k]) for k in ("error", "error_description", "hint") if data.get(k)]
            if parts:
                return cls(f"API error ({status}): {' | '.join(parts)}", status_code=status, body=body)
        return cls(f"API error ({status}): {_status_detail(resp)}", status_code=status, body=body)

    if isinstance(exc, _SETUP_ERRORS):
        return RequestSetupError(f"Request setup error: {exc}")

    if isinstance(exc, httpx.TransportError):
        if _is_local_dev_site(site_url):
            return NetworkError(
                "Network error: No response from DDEV site. Is DDEV running? Try using HTTP instead of HTTPS."
            )
        return NetworkError("Network error: No response from server. Check your site URL and internet connection.")

    return CanvasError(f"Network error: {exc}")


def _request_of(exc: Exception) -> httpx.Request | None:
    try:
        return exc.request  # type: ignore[attr-defined]
    except (AttributeError, RuntimeError):
        return None


def _safe_headers(request: httpx.Request | None) -> dict[str, str]:
    if request is None:
        return {}
    headers = dict(request.headers)
    for key in list(headers):
        if key.lower() == "authorization":
            headers[key] = REDACTED_AUTHORIZATION
    return headers


class CanvasClient:
    """
    Async client for the Canvas config API.

    The access token is obtained lazily with the OAuth client-credentials grant and
    refreshed once when a request comes back 401. Concurrent callers share a single
    in-flight token request.
    """

    def __init__(
        self,
        *,
        site_url: str,
        client_id: str,
        client_secret: str,
        scope: str,
        user_agent: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        verbose: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.site_url = site_url.rstrip("/")
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self.verbose = verbose

        headers = {
            "Content-Type": "application/json",
            CLI_MARKER_HEADER: "1",
        }
        if user_agent:
            headers["User-Agent"] = user_agent

        self._http = httpx.AsyncClient(
            base_url=self.site_url,
            headers=headers,
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
        )
        self._access_token: str | None = None
        self._refresh_task: asyncio.Task[str] | None = None

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "CanvasClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def token_state(self) -> str:
        if self._refresh_task is not None:
            return "refreshing"
        if self._access_token is None:
            return "unauthenticated"
        return "authenticated"

    # -- token lifecycle -------------------------------------------------

    async def _refresh_access_token(self) -> str:
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._request_token())
            task.add_done_callback(self._refresh_settled)
            self._refresh_task = task
        return await task

    def _refresh_settled(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _request_token(self) -> str:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": self.scope,
        }
        try:
            resp = await self._http.post(
                TOKEN_PATH,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            resp.raise_for_status()
            payload = self._decode(resp)
        except _HTTPX_ERRORS as e:
            self._access_token = None
            raise self.normalize_error(e) from e
        except CanvasError:
            self._access_token = None
            raise

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            self._access_token = None
            raise AuthenticationError(
                "Authentication failed. The token endpoint did not return an access token.",
                status_code=resp.status_code,
                body=resp.text,
            )
        self._access_token = token
        return token

    # -- request pipeline ------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _send(self, method: str, path: str, *, json_body: Any | None = None) -> httpx.Response:
        if self._access_token is None or self._refresh_task is not None:
            await self._refresh_access_token()

        url = f"{API_BASE_PATH}{path}"
        sent_token = self._access_token
        resp = await self._http.request(method, url, json=json_body, headers=self._auth_headers())
        if resp.status_code == 401:
            # One refresh-and-retry; a refresh failure replaces the 401.
            # A token already replaced by another caller's refresh is reused as is.
            if self._refresh_task is not None or self._access_token in (None, sent_token):
                await self._refresh_access_token()
            resp = await self._http.request(method, url, json=json_body, headers=self._auth_headers())
        resp.raise_for_status()
        return resp

    def _decode(self, resp: httpx.Response) -> Any:
        text = resp.text
        if any(marker in text for marker in FATAL_ERROR_MARKERS):
            if self.verbose:
                print("API error details:", file=sys.stderr)
                print(f"- Status: {resp.status_code}", file=sys.stderr)
                print(f"- URL: {resp.request.url}", file=sys.stderr)
                print(f"- Response data: {text}", file=sys.stderr)
            first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
            raise ApiError(
                f"API error ({resp.status_code}): server reported a fatal error: {first_line}",
                status_code=resp.status_code,
                body=text,
            )
        if not text.strip():
            return None
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return text

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: Any | None = None,
        passthrough: bool = False,
    ) -> Any:
        try:
            resp = await self._send(method, path, json_body=json_body)
        except _HTTPX_ERRORS as e:
            if passthrough:
                raise
            raise self.normalize_error(e) from e
        return self._decode(resp)

    # -- error reporting -------------------------------------------------

    def normalize_error(self, exc: Exception) -> CanvasError:
        if self.verbose:
            self._log_error_details(exc)
        return classify_error(exc, site_url=self.site_url)

    def _log_error_details(self, exc: Exception) -> None:
        request = _request_of(exc)
        method = request.method if request is not None else "unknown"
        url = str(request.url) if request is not None else "unknown"

        if isinstance(exc, httpx.HTTPStatusError):
            # 404s are expected when probing for components that do not exist yet.
            if exc.response.status_code == 404:
                return
            data = _json_or_none(exc.response)
            rendered = json.dumps(data, indent=2) if data is not None else exc.response.text
            print("API error details:", file=sys.stderr)
            print(f"- Status: {exc.response.status_code}", file=sys.stderr)
            print(f"- URL: {url}", file=sys.stderr)
            print(f"- Method: {method}", file=sys.stderr)
            print(f"- Response data: {rendered}", file=sys.stderr)
            print(f"- Request headers: {json.dumps(_safe_headers(request), indent=2)}", file=sys.stderr)
            return

        if isinstance(exc, _SETUP_ERRORS):
            print("Request setup error:", file=sys.stderr)
            print(f"- Error: {exc}", file=sys.stderr)
            return

        if isinstance(exc, httpx.TransportError):
            print("Network error details:", file=sys.stderr)
            print("- No response received from server", file=sys.stderr)
            print(f"- URL: {url}", file=sys.stderr)
            print(f"- Method: {method}", file=sys.stderr)
            print(f"- Request headers: {json.dumps(_safe_headers(request), indent=2)}", file=sys.stderr)
            if _is_local_dev_site(self.site_url):
                print("\nDDEV local development troubleshooting tips:", file=sys.stderr)
                print('1. Make sure DDEV is running: try "ddev status"', file=sys.stderr)
                print("2. Try using HTTP instead of HTTPS for the site URL", file=sys.stderr)
                print("3. Check if the site is accessible in your browser", file=sys.stderr)
                print('4. For HTTPS issues: try "ddev auth ssl" to set up local SSL certificates', file=sys.stderr)
            return

        print(f"General error: {exc!r}", file=sys.stderr)

    # -- operations ------------------------------------------------------

    async def list_components(self) -> dict[str, Component]:
        data = await self._call("GET", "/config/js_component")
        if not data:
            return {}
        if not isinstance(data, dict):
            raise ApiError("API error (200): unexpected component list payload.", status_code=200, body=str(data))
        components = [Component.from_api(item) for item in data.values()]
        return {c.machine_name: c for c in components}

    async def get_component(self, machine_name: str) -> Component:
        try:
            data = await self._call("GET", f"/config/js_component/{quote(machine_name, safe='')}")
        except NotFoundError as e:
            raise NotFoundError(f"Component '{machine_name}' not found", status_code=404, body=e.body) from e
        return Component.from_api(data)

    async def create_component(self, component: Component, passthrough: bool = False) -> Component:
        """
        Create a component.

        With ``passthrough=True`` the raw httpx error is re-raised so the caller can
        tell "already exists" apart from other failures; see ``normalize_error``.
        """
        data = await self._call(
            "POST",
            "/config/js_component",
            json_body=component.to_api(),
            passthrough=passthrough,
        )
        return Component.from_api(data)

    async def update_component(self, machine_name: str, fields: dict[str, Any]) -> Component:
        data = await self._call(
            "PATCH",
            f"/config/js_component/{quote(machine_name, safe='')}",
            json_body=fields,
        )
        return Component.from_api(data)

    async def get_global_asset_library(self) -> AssetLibrary:
        data = await self._call("GET", "/config/asset_library/global")
        return AssetLibrary.from_api(data)

    async def update_global_asset_library(self, fields: dict[str, Any]) -> AssetLibrary:
        data = await self._call("PATCH", "/config/asset_library/global", json_body=fields)
        return AssetLibrary.from_api(data)
