import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class PanelConfig:
    base_url: str = os.getenv("PTERODACTYL_URL", "http://localhost")
    api_key: str = os.getenv("PTERODACTYL_API_KEY", "")
    api_prefix: str = "/api/application"

    timeout: float = float(os.getenv("PANEL_TIMEOUT", "15.0"))
    max_connections: int = int(os.getenv("PANEL_MAX_CONNECTIONS", "20"))
    max_keepalive: int = int(os.getenv("PANEL_MAX_KEEPALIVE", "10"))

    retry_count: int = int(os.getenv("PANEL_RETRY_COUNT", "3"))
    retry_delay: float = float(os.getenv("PANEL_RETRY_DELAY", "1.0"))

    @property
    def application_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.api_prefix}"


panel_config = PanelConfig()
