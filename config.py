"""Application settings read from the environment"""
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Searches current dir and parents for a .env file
load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "ledger_db")

GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID")
GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET")
POST_LOGIN_REDIRECT = os.getenv("POST_LOGIN_REDIRECT", "/dashboard")
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "7"))

# Any OpenAI-compatible chat completions endpoint works, default is Zhipu BigModel
AI_API_KEY = os.getenv("AI_API_KEY") or os.getenv("GLM_API_KEY")
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://open.bigmodel.cn/api/paas/v4/")
AI_TEXT_MODEL = os.getenv("AI_TEXT_MODEL", "glm-4-flash")
AI_VISION_MODEL = os.getenv("AI_VISION_MODEL", "glm-4v-flash")
AI_RATE_LIMIT = os.getenv("AI_RATE_LIMIT", "15/minute")

# When true, AI-parsed transactions are returned as drafts and the client saves them
SAVE_AT_FRONT = _get_bool("SAVE_AT_FRONT", "true")

MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(5 * 1024 * 1024)))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PUBLIC_DIR = os.getenv("PUBLIC_DIR", "public")

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

if not GITHUB_CLIENT_ID or not GITHUB_CLIENT_SECRET:
    logger.error("GITHUB_CLIENT_ID / GITHUB_CLIENT_SECRET not set! GitHub login will fail.")
