import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


DATA_DIR = os.getenv("TOOLSHED_DATA_DIR", "./data")
IMAGES_DIR = os.getenv("TOOLSHED_IMAGES_DIR", os.path.join(DATA_DIR, "images"))
TEMP_IMAGES_DIR = os.getenv("TOOLSHED_TEMP_IMAGES_DIR", os.path.join(DATA_DIR, "temp_images"))

# Extraction gateway (Gemini REST)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY") or ""
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-flash-latest")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
EXTRACT_TIMEOUT_SECONDS = _int_env("EXTRACT_TIMEOUT_SECONDS", 30)
EXTRACTION_LOG_LIMIT = _int_env("EXTRACTION_LOG_LIMIT", 50)

# background tasks
AUTOSAVE_INTERVAL_SECONDS = _int_env("AUTOSAVE_INTERVAL_SECONDS", 5 * 60)
TEMP_SWEEP_INTERVAL_SECONDS = _int_env("TEMP_SWEEP_INTERVAL_SECONDS", 10 * 60)
TEMP_MAX_AGE_SECONDS = _int_env("TEMP_MAX_AGE_SECONDS", 60 * 60)

MAX_IMAGE_BYTES = _int_env("MAX_IMAGE_BYTES", 10 * 1024 * 1024)
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")

CORS_ORIGIN = os.getenv("CORS_ORIGIN", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
