"""Configuration for the Shotcaller prompt-to-path server."""

import os
from dotenv import load_dotenv

load_dotenv()

# LLM API Keys
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

# LLM Models
CLAUDE_MODELS = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
}

GEMINI_MODELS = {
    "flash": "gemini-2.5-flash",
    "pro": "gemini-2.5-pro-preview-06-05",
}

# Default LLM settings
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "claude")
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "haiku")
DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "2048"))
DEFAULT_TEMPERATURE = float(os.getenv("DEFAULT_TEMPERATURE", "0.7"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "2"))

# Path duration limits (seconds)
MIN_PATH_DURATION = 1.0
MAX_PATH_DURATION = 20.0
DURATION_TOLERANCE = 0.1

# Scene analysis
MAX_FEATURE_POINTS = int(os.getenv("MAX_FEATURE_POINTS", "100"))
SYMMETRY_TOLERANCE = 0.02

# Environment (width, height, depth)
ENVIRONMENT_SIZE = (
    float(os.getenv("ENVIRONMENT_WIDTH", "20")),
    float(os.getenv("ENVIRONMENT_HEIGHT", "20")),
    float(os.getenv("ENVIRONMENT_DEPTH", "20")),
)

# Camera safety envelope. These are tunable defaults, not load-tested limits.
DISTANCE_MARGIN = float(os.getenv("DISTANCE_MARGIN", "0.2"))
MAX_DISTANCE_RATIO = float(os.getenv("MAX_DISTANCE_RATIO", "5.0"))
HEIGHT_HEADROOM_RATIO = float(os.getenv("HEIGHT_HEADROOM_RATIO", "1.0"))
MAX_SPEED = float(os.getenv("MAX_SPEED", "4.0"))
MAX_ANGLE_CHANGE_DEG = float(os.getenv("MAX_ANGLE_CHANGE_DEG", "45.0"))
FRAMING_MARGIN_RATIO = float(os.getenv("FRAMING_MARGIN_RATIO", "0.1"))

# Interpreter / playback
SAMPLES_PER_SEGMENT = 16
PROGRESS_INTERVAL_SECONDS = 0.1
RECORDING_FPS = 30

# Cache
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "86400"))
METADATA_CACHE_TTL_SECONDS = int(os.getenv("METADATA_CACHE_TTL_SECONDS", "300"))

# Metadata store (REST backend, optional)
METADATA_STORE_URL = os.getenv("METADATA_STORE_URL", "")
METADATA_STORE_KEY = os.getenv("METADATA_STORE_KEY", "")
METADATA_RETRY_ATTEMPTS = 3
METADATA_RETRY_INITIAL_DELAY = 0.5
METADATA_RETRY_MAX_DELAY = 5.0

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
