import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

STATIC_DIR = BASE_DIR / "static"
DATA_DIR = BASE_DIR / "data"
GENERATED_DIR = STATIC_DIR / "generated"

DATA_DIR.mkdir(parents=True, exist_ok=True)
GENERATED_DIR.mkdir(parents=True, exist_ok=True)

SQLITE_PATH = os.getenv("DREAMS_SQLITE_PATH", str(DATA_DIR / "dreams.sqlite"))


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y")


# Public URL prefix for files written to GENERATED_DIR (served by app.py under /generated)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").strip().rstrip("/")

# Comma-separated list of allowed browser origins
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")

# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
TEXT_MODEL = os.getenv("OPENAI_TEXT_MODEL", os.getenv("OPENAI_MODEL", "gpt-4.1-mini"))
TEXT_TIMEOUT = float(os.getenv("OPENAI_TEXT_TIMEOUT", "45"))

# gpt-image-1 family returns b64 payloads; dall-e-3 returns hosted URLs
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1-mini")
IMAGE_SIZE = os.getenv("IMAGE_SIZE", "1024x1024")
IMAGE_QUALITY = os.getenv("IMAGE_QUALITY", "low")
IMAGE_TIMEOUT = float(os.getenv("IMAGE_TIMEOUT", "90"))

# Limits
GLOBAL_DREAM_INPUT_CAP = int(os.getenv("GLOBAL_DREAM_INPUT_CAP", "3000"))
IMAGE_PROMPT_BUDGET = int(os.getenv("IMAGE_PROMPT_BUDGET", "1000"))

# Emotion checkpoint: AI-assisted fallback when the keyword scan finds nothing
EMOTION_AI_FALLBACK = _env_flag("EMOTION_AI_FALLBACK", "1")
EMOTION_AI_TIMEOUT = float(os.getenv("EMOTION_AI_TIMEOUT", "5.0"))

# Post-write enrichment: "background" (worker thread) or "inline"
ENRICHMENT_MODE = os.getenv("ENRICHMENT_MODE", "background").strip().lower()
if ENRICHMENT_MODE not in ("background", "inline"):
    ENRICHMENT_MODE = "background"

# Promotional (launch offer) images carry a watermark
WATERMARK_TEXT = os.getenv("WATERMARK_TEXT", "Dreamworlds")

# Tier capabilities. usage_limit None = unlimited.
# Free tier counts lifetime analyses; paid tiers count the current month.
DEFAULT_TIERS = {
    "free": {
        "usage_limit": 2,
        "is_lifetime_limit": True,
        "image_entitled": False,
        "symbol_garden_entitled": False,
        "advanced_pattern_detection": False,
    },
    "pro": {
        "usage_limit": 10,
        "is_lifetime_limit": False,
        "image_entitled": True,
        "symbol_garden_entitled": False,
        "advanced_pattern_detection": False,
    },
    "premium": {
        "usage_limit": 20,
        "is_lifetime_limit": False,
        "image_entitled": True,
        "symbol_garden_entitled": True,
        "advanced_pattern_detection": True,
    },
    "vip": {
        "usage_limit": 25,
        "is_lifetime_limit": False,
        "image_entitled": True,
        "symbol_garden_entitled": True,
        "advanced_pattern_detection": True,
    },
}
