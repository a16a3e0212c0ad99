"""
Phoenix Client — HTTP client for the external calibration-management system.

Phoenix is the system of record for approve/reject actions. Unlike read-side
integrations this client does NOT degrade gracefully: every failure raises
PhoenixError so the decision workflow can stop before touching the local store.

NOTE: Phoenix is inconsistent about envelopes. Detail responses arrive either
bare or wrapped as {"Value": {"Certificate": {...}}}; login tokens under
several key spellings.
"""

import time
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx
import structlog

from certval.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)

_TOKEN_KEYS = ("token", "accessToken", "access_token", "Token", "AccessToken")


class PhoenixError(Exception):
    """A failed Phoenix call. status_code is None for transport failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, data: Any = None):
        self.message = message
        self.status_code = status_code
        self.data = data
        super().__init__(message)


def _extract_token(body: Any) -> str:
    """Pull the bearer token out of a login response (handles all known shapes)."""
    if isinstance(body, str):
        token = body
    elif isinstance(body, dict):
        access = body.get("AccessToken")
        if isinstance(access, dict) and access.get("Token"):
            token = access["Token"]
        else:
            token = next((body[k] for k in _TOKEN_KEYS if body.get(k)), None)
    else:
        token = None

    if not token or not isinstance(token, str):
        raise PhoenixError("Invalid token response")
    return token


def _error_message(prefix: str, response: httpx.Response) -> str:
    """'<prefix> (HTTP <status>): <upstream message>' — the status is parsed downstream."""
    message = f"{prefix} (HTTP {response.status_code})"
    try:
        data = response.json()
    except ValueError:
        data = response.text
    if isinstance(data, str) and data:
        message += f": {data}"
    elif isinstance(data, dict):
        detail = data.get("message") or data.get("error")
        if detail:
            message += f": {detail}"
    return message


def _unwrap_certificate(body: Any) -> dict:
    if isinstance(body, dict):
        value = body.get("Value")
        if isinstance(value, dict) and isinstance(value.get("Certificate"), dict):
            return value["Certificate"]
        return body
    return {}


class PhoenixClient:
    """
    Async client for the Phoenix API.

    The bearer token is cached for token_ttl_minutes (Phoenix tokens live
    60 minutes) and refreshed lazily before the next call.
    """

    def __init__(
        self,
        base_url: str,
        login_url: str = "",
        username: str = "",
        password: str = "",
        list_all_url: str = "",
        detail_url_template: str = "",
        timeout: float = 30.0,
        token_ttl_minutes: int = 55,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.login_url = login_url or f"{self.base_url}/api/auth/login"
        self.username = username.strip()
        self.password = password.strip()
        self.list_all_url = list_all_url
        self.detail_url_template = detail_url_template
        self.timeout = timeout
        self.token_ttl_seconds = token_ttl_minutes * 60
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expiry: float = 0.0

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "PhoenixClient":
        return cls(
            base_url=cfg.phoenix_base_url,
            login_url=cfg.phoenix_login_endpoint,
            username=cfg.phoenix_username,
            password=cfg.phoenix_password,
            list_all_url=cfg.phoenix_list_all_url,
            detail_url_template=cfg.phoenix_detail_url_template,
            timeout=cfg.phoenix_timeout_seconds,
            token_ttl_minutes=cfg.phoenix_token_ttl_minutes,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    def host_origin(self) -> str:
        """Origin hosting the action endpoints (same host as the list/login APIs)."""
        for url in (self.list_all_url, self.login_url):
            if url:
                parsed = urlparse(url)
                if parsed.scheme and parsed.netloc:
                    return f"{parsed.scheme}://{parsed.netloc}"
        return self.base_url

    # ── Auth ──────────────────────────────────────────────────────────────

    async def authenticate(self) -> str:
        try:
            async with self._client() as client:
                resp = await client.post(
                    self.login_url,
                    json={"UserName": self.username, "Password": self.password},
                )
        except httpx.HTTPError as e:
            logger.error("phoenix_auth_error", error=str(e))
            raise PhoenixError(f"Phoenix authentication failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("phoenix_auth_failed", status=resp.status_code)
            raise PhoenixError(
                _error_message("Phoenix authentication failed", resp),
                status_code=resp.status_code,
            )

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text
        self._token = _extract_token(body)
        self._token_expiry = time.monotonic() + self.token_ttl_seconds
        logger.info("phoenix_authenticated")
        return self._token

    async def auth_headers(self) -> dict[str, str]:
        if not self._token or time.monotonic() >= self._token_expiry:
            await self.authenticate()
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    # ── Reads ─────────────────────────────────────────────────────────────

    async def _get_json(self, url: str, action: str, **kwargs) -> Any:
        headers = await self.auth_headers()
        try:
            async with self._client() as client:
                resp = await client.get(url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise PhoenixError(f"{action} failed: {e}") from e
        if resp.status_code >= 400:
            raise PhoenixError(_error_message(f"{action} failed", resp), status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise PhoenixError(f"{action} returned a non-JSON body") from e

    async def get_certificate_details(self, cert_no: str) -> dict:
        """Certificate detail record (identifier field spellings vary)."""
        if not self.detail_url_template:
            raise PhoenixError("Phoenix detail URL is not configured")
        url = self.detail_url_template.replace("{certNo}", quote(cert_no, safe=""))
        body = await self._get_json(url, "Phoenix certificate lookup")
        return _unwrap_certificate(body)

    # ── Actions ───────────────────────────────────────────────────────────

    async def reject_calibration(
        self,
        calibration_id: str,
        error_list_id: str,
        comment: str,
    ) -> None:
        """Record a calibration error in Phoenix (the upstream "reject")."""
        if not calibration_id:
            raise PhoenixError("reject_calibration: calibration_id is required")
        headers = await self.auth_headers()
        url = f"{self.host_origin()}/api/Calibration/CreateCalibrationError"
        body = {
            "CalibrationId": calibration_id,
            "CalibrationErrors": [
                {
                    "CalibrationErrorListId": error_list_id,
                    "Comment": comment,
                    "Attachments": [],
                }
            ],
        }
        try:
            async with self._client() as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("phoenix_reject_error", calibration_id=calibration_id, url=url, error=str(e))
            raise PhoenixError(f"Phoenix rejection failed: {e}") from e

        if resp.status_code >= 400:
            message = _error_message("Phoenix rejection failed", resp)
            logger.error(
                "phoenix_reject_failed",
                calibration_id=calibration_id,
                url=url,
                status=resp.status_code,
                message=message,
            )
            raise PhoenixError(message, status_code=resp.status_code)

        logger.info("phoenix_reject_ok", calibration_id=calibration_id, status=resp.status_code)

    async def approve_calibration(
        self,
        calibration_id: str,
        revision_comment: str,
        justification_comment: Optional[str] = None,
        ai_analysis: Optional[str] = None,
    ) -> None:
        if not calibration_id:
            raise PhoenixError("approve_calibration: calibration_id is required")
        headers = await self.auth_headers()
        url = (
            f"{self.host_origin()}/api/ServiceItem/InsertServiceItemApprove/"
            f"{quote(calibration_id, safe='')}"
        )
        params = {
            "revisionComment": revision_comment,
            "justificationComment": justification_comment or "",
            "AIAnalysis": ai_analysis or "",
        }
        try:
            async with self._client() as client:
                resp = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.error("phoenix_approve_error", calibration_id=calibration_id, url=url, error=str(e))
            raise PhoenixError(f"Phoenix approval failed: {e}") from e

        if resp.status_code >= 400:
            message = _error_message("Phoenix approval failed", resp)
            logger.error(
                "phoenix_approve_failed",
                calibration_id=calibration_id,
                url=url,
                status=resp.status_code,
                message=message,
            )
            raise PhoenixError(message, status_code=resp.status_code)

        logger.info("phoenix_approve_ok", calibration_id=calibration_id, status=resp.status_code)
