from typing import Any, Dict
from pydantic import RootModel


class SettingsPatch(RootModel[Dict[str, Dict[str, Any]]]):
    """``{category: {key: value}}`` partial update."""
