from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crm_gateway.core.auth import client_ip, require_api_key
from crm_gateway.core.database import get_async_session
from crm_gateway.schemas.salesforce import SalesforceCall
from crm_gateway.services.salesforce_service import SalesforceService

router = APIRouter()


def caller(request: Request, context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "user_id": context["user"].id,
        "api_key_id": context["api_key"].id,
    }


async def _token(request: Request, context: Dict[str, Any], session: AsyncSession):
    return await SalesforceService(session).get_token(
        **caller(request, context), type=request.headers.get("X-Request-Type")
    )


@router.get("/token")
async def get_token(
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    """
    Fetch a CRM access token.

    The call is audited when an ``X-Request-Type`` header tags it.
    """
    return await _token(request, context, session)


@router.post("/token")
async def refresh_token(
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await _token(request, context, session)


@router.post("/pledge")
async def call_pledge_api(
    body: SalesforceCall,
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await SalesforceService(session).call_pledge_api(body.payload, body.token, **caller(request, context))


@router.post("/pledge-charge")
async def call_pledge_charge_api(
    body: SalesforceCall,
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await SalesforceService(session).call_pledge_charge_api(body.payload, body.token, **caller(request, context))


@router.post("/oneoff")
async def call_one_off_api(
    body: SalesforceCall,
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await SalesforceService(session).call_one_off_api(body.payload, body.token, **caller(request, context))


@router.post("/payment-link")
async def call_payment_link_api(
    body: SalesforceCall,
    request: Request,
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await SalesforceService(session).call_payment_link_api(body.payload, body.token, **caller(request, context))


@router.get("/pledge-cron-jobs")
async def get_pledge_cron_jobs(
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    """Undelivered scheduled pledge results; returned rows are marked delivered."""
    return await SalesforceService(session).collect_cron_jobs("pledge")


@router.get("/oneoff-cron-jobs")
async def get_oneoff_cron_jobs(
    context: Dict[str, Any] = Depends(require_api_key),
    session: AsyncSession = Depends(get_async_session)
):
    return await SalesforceService(session).collect_cron_jobs("oneoff")
