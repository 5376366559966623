import json
from typing import Any, Dict, Optional

from crm_gateway.core.exceptions import ForbiddenError
from crm_gateway.models.user import ADMIN_ROLES, UserRole
from .base_service import BaseService

SettingsObject = Dict[str, Dict[str, Any]]

LIVE_CATEGORIES = ("general", "security")


def detect_type(value: Any) -> str:
    # bool is an int subclass, so it is checked first
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if value is None or isinstance(value, (dict, list)):
        return "json"
    return "string"


def serialize_value(value: Any, value_type: str) -> str:
    if value_type == "json":
        return json.dumps(value)
    if value_type == "boolean":
        return "true" if value else "false"
    return str(value)


def parse_value(raw: str, value_type: str) -> Any:
    if value_type == "boolean":
        return raw == "true"
    if value_type == "number":
        try:
            return int(raw)
        except ValueError:
            return float(raw)
    if value_type == "json":
        try:
            return json.loads(raw)
        except ValueError:
            return None
    return raw


class SettingsService(BaseService):
    """Typed key/value configuration grouped by category."""

    async def get_all_settings(self) -> SettingsObject:
        grouped: SettingsObject = {}
        for setting in await self.setting_repo.list_all():
            grouped.setdefault(setting.category, {})[setting.key] = parse_value(setting.value, setting.value_type)
        return grouped

    async def update_settings(self, patch: SettingsObject, role: Optional[UserRole]) -> SettingsObject:
        if role not in ADMIN_ROLES:
            raise ForbiddenError("Only admin can update settings")

        for category, values in patch.items():
            for key, value in values.items():
                value_type = detect_type(value)
                await self.setting_repo.upsert(category, key, serialize_value(value, value_type), value_type)
        await self.commit()

        self.logger.info("Settings updated", categories=list(patch.keys()))
        return await self.get_all_settings()

    async def get_setting(self, category: str, key: str, default: Any = None) -> Any:
        setting = await self.setting_repo.get_value(category, key)
        if setting is None:
            return default
        return parse_value(setting.value, setting.value_type)

    async def get_category(self, category: str) -> Dict[str, Any]:
        return {
            setting.key: parse_value(setting.value, setting.value_type)
            for setting in await self.setting_repo.get_by_category(category)
        }

    async def get_live_settings(self) -> SettingsObject:
        """The ``general`` and ``security`` categories read fresh from the store."""
        grouped: SettingsObject = {category: {} for category in LIVE_CATEGORIES}
        for category in LIVE_CATEGORIES:
            grouped[category] = await self.get_category(category)
        return grouped
