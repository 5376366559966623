from pydantic import BaseModel

CRON_JOB_TYPES = ("pledge", "oneoff", "recurring", "hourly")


class CronToggle(BaseModel):
    enabled: bool
