"""
Crowdsource Engine - Configuration

All settings come from the environment with defaults suitable for a local
single-process deployment.
"""
import os


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./crowdsource.db")

# Inbound API key (webhook + internal endpoints)
AGENT_API_KEY = os.getenv("AGENT_API_KEY", "crowdsource-agent-key-change-in-production")

# Consensus
VERIFICATION_THRESHOLD = _int("VERIFICATION_THRESHOLD", 3)
SPATIAL_ACCURACY_RADIUS_M = _float("SPATIAL_ACCURACY_RADIUS_M", 50.0)

# Idempotency guard
DEDUP_WINDOW_SECONDS = _float("DEDUP_WINDOW_SECONDS", 10.0)
DEDUP_SWEEP_INTERVAL_SECONDS = _float("DEDUP_SWEEP_INTERVAL_SECONDS", 30.0)
DEDUP_MAX_ENTRIES = _int("DEDUP_MAX_ENTRIES", 10000)

# Notification fanout
NOTIFICATION_DELAY_SECONDS = _float("NOTIFICATION_DELAY_SECONDS", 1.0)
NOTIFICATION_QUEUE_SIZE = _int("NOTIFICATION_QUEUE_SIZE", 1000)

# Boundary datasets (GeoJSON, one file per administrative layer)
BOUNDARY_DATA_DIR = os.getenv("BOUNDARY_DATA_DIR", os.path.join(os.getcwd(), "data"))
DISTRICT_BOUNDARY_FILE = os.getenv("DISTRICT_BOUNDARY_FILE", "sle_admin2.geojson")
WARD_BOUNDARY_FILE = os.getenv("WARD_BOUNDARY_FILE", "sle_admin3.geojson")

# Geocoding (Nominatim-compatible)
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org")
GEOCODER_TIMEOUT_SECONDS = _float("GEOCODER_TIMEOUT_SECONDS", 5.0)
GEOCODER_COUNTRY_CODES = os.getenv("GEOCODER_COUNTRY_CODES", "sl")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "crowdsource-engine/1.0")

# Outbound messaging gateway
WHATSAPP_SERVER_URL = os.getenv("WHATSAPP_SERVER_URL", "http://localhost:3700")
WHATSAPP_API_KEY = os.getenv("WHATSAPP_API_KEY", "")
MESSAGING_TIMEOUT_SECONDS = _float("MESSAGING_TIMEOUT_SECONDS", 10.0)

# Image storage. Empty URL means local disk under UPLOAD_DIR.
IMAGE_STORAGE_URL = os.getenv("IMAGE_STORAGE_URL", "")
IMAGE_STORAGE_TOKEN = os.getenv("IMAGE_STORAGE_TOKEN", "")
IMAGE_STORAGE_TIMEOUT_SECONDS = _float("IMAGE_STORAGE_TIMEOUT_SECONDS", 30.0)
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

# Misc
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BRAND_NAME = os.getenv("BRAND_NAME", "Crowdsource Agent")
WEB_APP_URL = os.getenv("WEB_APP_URL", "")
