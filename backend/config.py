import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./prompt_battles.db")
# Managed Postgres providers need TLS but ship certificates asyncpg can't verify
DATABASE_SSL = _flag("DATABASE_SSL")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")

SUBMISSION_SECONDS = int(os.getenv("SUBMISSION_SECONDS", "60"))
DEFAULT_TOTAL_ROUNDS = int(os.getenv("DEFAULT_TOTAL_ROUNDS", "3"))
MIN_TOTAL_ROUNDS = 1
MAX_TOTAL_ROUNDS = int(os.getenv("MAX_TOTAL_ROUNDS", "10"))
ROOM_CODE_ATTEMPTS = 5

# Some clients let any player advance once the shared countdown ends
REQUIRE_HOST_TO_ADVANCE = _flag("REQUIRE_HOST_TO_ADVANCE")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
