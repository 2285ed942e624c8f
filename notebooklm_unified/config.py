"""Configuration and runtime constants."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Cloud backend (Gemini through its OpenAI-compatible endpoint)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("VITE_GEMINI_API_KEY")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/"
)
MODEL_NAME = os.getenv("MODEL_NAME", "gemini-2.0-flash")
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "8192"))
CLOUD_TIMEOUT = float(os.getenv("CLOUD_TIMEOUT", "120"))
CLOUD_RETRY_ATTEMPTS = int(os.getenv("CLOUD_RETRY_ATTEMPTS", "3"))

# Local backend (notebooklm-mcp --transport http --port 3456)
NOTEBOOKLM_MCP_URL = os.getenv("NOTEBOOKLM_MCP_URL", "http://localhost:3456")
MCP_HEALTH_TIMEOUT = float(os.getenv("MCP_HEALTH_TIMEOUT", "5"))
MCP_INIT_TIMEOUT = float(os.getenv("MCP_INIT_TIMEOUT", "10"))
MCP_TOOL_TIMEOUT = float(os.getenv("MCP_TOOL_TIMEOUT", "120"))
MCP_CLIENT_NAME = os.getenv("MCP_CLIENT_NAME", "notebooklm-unified")

# Content defaults
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "he")

# Queue store
QUEUE_BACKEND = os.getenv("QUEUE_BACKEND", "supabase")  # "supabase" or "sqlite"
SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
QUEUE_TABLE = os.getenv("QUEUE_TABLE", "notebooklm_content")
QUEUE_CREATED_BY = os.getenv("QUEUE_CREATED_BY", "system")  # required owner column of the table

# Queue processor
STALE_AFTER_MINUTES = int(os.getenv("STALE_AFTER_MINUTES", "10"))
MAX_ITEMS_PER_CYCLE = int(os.getenv("MAX_ITEMS_PER_CYCLE", "5"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "10"))
WATCH_INTERVAL = float(os.getenv("WATCH_INTERVAL", "30"))
SESSION_RESET_THRESHOLD = int(os.getenv("SESSION_RESET_THRESHOLD", "2"))
MAX_POLL_ATTEMPTS = {
    "podcast": int(os.getenv("MAX_POLL_ATTEMPTS_PODCAST", "60")),  # audio synthesis is slow
    "slides": int(os.getenv("MAX_POLL_ATTEMPTS_SLIDES", "30")),
    "infographic": int(os.getenv("MAX_POLL_ATTEMPTS_INFOGRAPHIC", "30")),
}

# Directory Configuration
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("NOTEBOOKLM_DATA_DIR", str(BASE_DIR / "data")))

# File paths
SETTINGS_FILE = Path(os.getenv("SETTINGS_FILE", str(DATA_DIR / "settings.json")))
QUEUE_DB = Path(os.getenv("QUEUE_DB", str(DATA_DIR / "queue.sqlite")))

# Testing Configuration
LIVE_TESTING = os.getenv("NOTEBOOKLM_LIVE", "0") == "1"
