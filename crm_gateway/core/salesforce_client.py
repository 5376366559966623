import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .config import settings
from .logging import get_logger

logger = get_logger(__name__)

PLEDGE_PATH = "/core/pledge/v2.0/"
PLEDGE_CHARGE_PATH = "/core/pledgewcharge/v2.0/"
ONEOFF_PATH = "/core/oneoff/v2.0/"
PAYMENT_LINK_PATH = "/idn/v2.0/xendit/"


def format_response_data(data: Any, http_code: int, is_error: bool) -> Dict[str, Any]:
    """Lists are wrapped, dicts are spread and anything else goes under ``value``."""
    if isinstance(data, list):
        return {"data": data, "error": is_error, "http_code": http_code}
    if isinstance(data, dict):
        return {**data, "error": is_error, "http_code": http_code}
    return {"value": data, "error": is_error, "http_code": http_code}


class SalesforceClient:
    """Thin httpx client for the CRM's token endpoint and REST APIs."""

    def __init__(self, base_url: str = None, timeout: int = None):
        """
        Initialize the client.

        Args:
            base_url: Prefix for relative API paths
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or settings.SF_BASE_ENDPOINT).rstrip("/")
        self.timeout = timeout or settings.SF_TIMEOUT_SECONDS

    def build_headers(
        self,
        is_json: bool = True,
        subscription_key: Optional[str] = None,
        extra: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        if is_json:
            headers = {
                "CountryCode": "IDN",
                "SchemaVersion": "1.0",
                "MapVersion": "1.0",
                "Content-Type": "application/json",
                "Ocp-Apim-Subscription-Key": subscription_key if subscription_key is not None else settings.SF_SUBSCRIPTION_KEY,
            }
        else:
            headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if extra:
            headers.update(extra)
        return headers

    def resolve_url(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        return f"{self.base_url}{url}"

    async def direct_api(
        self,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        is_json: bool = True,
        subscription_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Call a CRM endpoint without raising on HTTP status.

        A payload makes the request a POST (JSON or form encoded), otherwise
        a GET. Network failures come back with ``http_code`` 0.

        Returns:
            ``{data, http_code, error, success, url}``
        """
        url = self.resolve_url(url)
        request_headers = self.build_headers(is_json, subscription_key, headers)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if payload is None:
                    response = await client.get(url, headers=request_headers)
                elif is_json:
                    response = await client.post(url, json=payload, headers=request_headers)
                else:
                    form = {key: str(value) for key, value in payload.items()}
                    response = await client.post(url, data=form, headers=request_headers)
        except httpx.HTTPError as e:
            logger.error("Direct API call failed", url=url, error=str(e))
            return {
                "error_type": "timeout" if isinstance(e, httpx.TimeoutException) else "connection",
                "data": {"error": True, "message": str(e) or e.__class__.__name__, "http_code": 0},
                "http_code": 0,
                "error": True,
                "success": False,
                "url": url,
            }

        try:
            body = response.json()
        except ValueError:
            body = response.text

        http_code = response.status_code
        ok = 200 <= http_code < 300
        if not ok:
            logger.warning("CRM returned an error status", url=url, status_code=http_code)
        return {
            "data": format_response_data(body, http_code, not ok),
            "http_code": http_code,
            "error": not ok,
            "success": ok,
            "url": url,
        }

    async def get_token(self) -> Dict[str, Any]:
        """Client-credentials token request."""
        requested_at = datetime.now(timezone.utc)
        started = time.time()
        payload = {
            "grant_type": "client_credentials",
            "client_id": settings.SF_CLIENT_ID,
            "client_secret": settings.SF_CLIENT_SECRET,
            "resource": settings.SF_RESOURCE_API,
        }
        response = await self.direct_api(settings.SF_TOKEN_URL, payload, is_json=False)
        duration_ms = int((time.time() - started) * 1000)

        if response["error"]:
            message = response["data"].get("message") or "Unknown error"
            logger.error("Failed to get Salesforce token", status_code=response["http_code"], error=message)
            return {
                "token_response": None,
                "request_timestamp": requested_at,
                "success": False,
                "error": f"API Error: {message}",
                "payload": payload,
                "response": response,
                "duration_ms": duration_ms,
            }

        return {
            "token_response": response["data"],
            "request_timestamp": requested_at,
            "success": True,
            "error": None,
            "payload": payload,
            "response": response,
            "duration_ms": duration_ms,
        }


salesforce_client = SalesforceClient()
