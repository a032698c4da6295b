import os
from typing import Final, Tuple


DEFAULT_OVERPASS_MIRRORS: Tuple[str, ...] = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class _Config:
    def __init__(self) -> None:
        # Security / limits
        self.api_key: str | None = os.getenv("ATLAS_API_KEY")
        self.rate_limit: str = os.getenv("ATLAS_RATE_LIMIT", "30/minute")

        # HTTP behavior
        # Nominatim's usage policy requires an identifying User-Agent
        self.user_agent: str = os.getenv("ATLAS_USER_AGENT", "AtlasOracle/1.0 (atlas-oracle-demo)")
        try:
            self.http_timeout_sec: float = float(os.getenv("HTTP_TIMEOUT_SEC", "15"))
        except ValueError:
            self.http_timeout_sec = 15.0

        # External API bases
        self.nominatim_base: str = os.getenv("NOMINATIM_BASE", "https://nominatim.openstreetmap.org")
        self.open_meteo_base: str = os.getenv("OPEN_METEO_BASE", "https://api.open-meteo.com/v1/forecast")
        raw_mirrors = os.getenv("OVERPASS_MIRRORS", "")
        mirrors = tuple(m.strip() for m in raw_mirrors.split(",") if m.strip())
        self.overpass_mirrors: Tuple[str, ...] = mirrors or DEFAULT_OVERPASS_MIRRORS

        # Context sizing
        try:
            self.poi_context_limit: int = int(os.getenv("POI_CONTEXT_LIMIT", "50"))
        except ValueError:
            self.poi_context_limit = 50

        # Reasoning service
        self.gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.live_search: bool = _env_flag("ATLAS_LIVE_SEARCH")

        # Voice backend
        self.elevenlabs_api_key: str | None = os.getenv("ELEVENLABS_API_KEY")
        self.voice_agent_id: str = os.getenv("ELEVENLABS_AGENT_ID", "agent_3601kdtg1b0tewg8e1kh88fce7gv")

        self.orchestrator_url: str = os.getenv("ORCHESTRATOR_URL", "http://localhost:3002")


CONFIG: Final[_Config] = _Config()
