import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "placements")
COLLECTION_NAME = os.getenv("COLLECTION_NAME", "postplacementoffers")

# Every store call carries this server-side budget (maxTimeMS).
QUERY_TIMEOUT_MS = int(os.getenv("QUERY_TIMEOUT_MS", "10000"))
SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("SERVER_SELECTION_TIMEOUT_MS", "5000"))

# ---- LLM / plan oracle ----
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
LLM_TIMEOUT_MS = int(os.getenv("LLM_TIMEOUT_MS", "20000"))
# Retries apply to HTTP 429 only, never to an invalid plan.
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
]
