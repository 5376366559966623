from fastapi import APIRouter

from .endpoints import api_keys, audit, auth, cron_jobs, errors, health, queue, reports, salesforce, settings, users

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(salesforce.router, prefix="/v1/salesforce", tags=["salesforce"])
api_router.include_router(api_keys.router, prefix="/api-key", tags=["api-keys"])
api_router.include_router(users.router, prefix="/user", tags=["users"])
api_router.include_router(cron_jobs.router, prefix="/cron-jobs", tags=["cron-jobs"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(errors.router, prefix="/errors", tags=["errors"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(queue.router, prefix="/queue", tags=["queue"])
