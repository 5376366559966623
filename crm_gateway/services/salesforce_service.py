import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from crm_gateway.core.salesforce_client import (
    ONEOFF_PATH,
    PAYMENT_LINK_PATH,
    PLEDGE_CHARGE_PATH,
    PLEDGE_PATH,
    SalesforceClient,
    salesforce_client,
)
from crm_gateway.core.config import settings
from .audit_service import AuditService
from .base_service import BaseService

CRON_JOB_FETCH_LIMIT = 1000


class SalesforceService(BaseService):
    """CRM calls made on behalf of API-key clients, each one audited."""

    def __init__(self, session, client: SalesforceClient = None):
        super().__init__(session)
        self.client = client or salesforce_client
        self.audit = AuditService(session)

    async def get_token(
        self,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
        api_key_id: Optional[str] = None,
        type: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await self.client.get_token()

        # Token fetches are audited only when the caller tags the request type
        if type and user_id and api_key_id:
            request_data = {k: v for k, v in result["payload"].items() if k != "client_secret"}
            await self.audit.log_api_call(
                user_id, api_key_id, "POST", "/v1/salesforce/token", "getToken", type,
                request_data, result["response"]["data"], result["response"]["http_code"],
                ip_address, user_agent, result["duration_ms"],
            )

        return {
            "token_response": result["token_response"],
            "request_timestamp": result["request_timestamp"],
            "success": result["success"],
            "error": result["error"],
        }

    async def _call(
        self,
        path: str,
        endpoint: str,
        method: str,
        type: str,
        payload: Dict[str, Any],
        token: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        user_id: Optional[str],
        api_key_id: Optional[str],
        subscription_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        started = time.time()
        response = await self.client.direct_api(
            path,
            payload,
            headers={"Authorization": f"Bearer {token}"},
            subscription_key=subscription_key,
        )
        await self.audit.log_api_call(
            user_id, api_key_id, "POST", endpoint, method, type,
            payload, response["data"], response["http_code"],
            ip_address or "unknown", user_agent or "unknown",
            int((time.time() - started) * 1000),
            is_delivered=True,
        )
        return response

    async def call_pledge_api(self, payload, token, ip_address=None, user_agent=None, user_id=None, api_key_id=None):
        return await self._call(PLEDGE_PATH, "/v1/salesforce/pledge", "callPledgeApi", "post-monthly",
                                payload, token, ip_address, user_agent, user_id, api_key_id)

    async def call_pledge_charge_api(self, payload, token, ip_address=None, user_agent=None, user_id=None, api_key_id=None):
        return await self._call(PLEDGE_CHARGE_PATH, "/v1/salesforce/pledge-charge", "callPledgeChargeApi", "charge",
                                payload, token, ip_address, user_agent, user_id, api_key_id)

    async def call_one_off_api(self, payload, token, ip_address=None, user_agent=None, user_id=None, api_key_id=None):
        return await self._call(ONEOFF_PATH, "/v1/salesforce/oneoff", "callOneOffApi", "post-oneoff",
                                payload, token, ip_address, user_agent, user_id, api_key_id)

    async def call_payment_link_api(self, payload, token, ip_address=None, user_agent=None, user_id=None, api_key_id=None):
        return await self._call(PAYMENT_LINK_PATH, "/v1/salesforce/payment-link", "callXenditPaymentLinkApi",
                                "payment-link", payload, token, ip_address, user_agent, user_id, api_key_id,
                                subscription_key=settings.SF_SUBSCRIPTION_PAYMENT_KEY)

    async def collect_cron_jobs(self, job_type: str) -> Dict[str, Any]:
        """Hand out undelivered scheduled results of ``job_type`` and mark them delivered."""
        jobs = await self.audit.get_undelivered_cron_jobs(None, job_type, CRON_JOB_FETCH_LIMIT)
        if jobs:
            await self.audit.mark_as_delivered([job["id"] for job in jobs])
        return {"jobs": jobs, "count": len(jobs), "timestamp": datetime.now(timezone.utc).isoformat()}
