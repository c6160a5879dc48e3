from .api_client import (
    PterodactylClient,
    APIResponse,
    APIResult,
    get_panel_client,
    close_panel_client,
)
from .config import panel_config, PanelConfig

__all__ = [
    "PterodactylClient",
    "APIResponse",
    "APIResult",
    "get_panel_client",
    "close_panel_client",
    "panel_config",
    "PanelConfig",
]
