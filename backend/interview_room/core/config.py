import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[2]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=True)

_TRUTHY = {"1", "true", "yes", "on"}

QA_MODE = os.getenv("QA_MODE", "false").lower() == "true"

# Profile store (Firestore REST)
FIREBASE_PROJECT_ID = str(os.getenv("FIREBASE_PROJECT_ID") or "").strip()
FIREBASE_API_KEY = str(os.getenv("FIREBASE_API_KEY") or "").strip()
PROFILE_COLLECTION = str(os.getenv("PROFILE_COLLECTION") or "users").strip()
PROFILE_FETCH_TIMEOUT_SEC = max(1.0, float(os.getenv("PROFILE_FETCH_TIMEOUT_SEC", "8")))

# Remote conversational agent
DEFAULT_AGENT_ID = "agent_7401kacjnt4eeyz9m8jgn65xn4ev"
ELEVENLABS_AGENT_ID = str(os.getenv("ELEVENLABS_AGENT_ID") or DEFAULT_AGENT_ID).strip()
ELEVENLABS_API_KEY = str(os.getenv("ELEVENLABS_API_KEY") or "").strip()
ELEVENLABS_WS_URL = str(
    os.getenv("ELEVENLABS_WS_URL") or "wss://api.elevenlabs.io/v1/convai/conversation"
).strip()
ELEVENLABS_SIGNED_URL_ENDPOINT = str(
    os.getenv("ELEVENLABS_SIGNED_URL_ENDPOINT")
    or "https://api.elevenlabs.io/v1/convai/conversation/get-signed-url"
).strip()
AGENT_CONNECT_TIMEOUT_SEC = max(2.0, float(os.getenv("AGENT_CONNECT_TIMEOUT_SEC", "15")))

# Microphone
AUDIO_SAMPLE_RATE = max(8000, int(os.getenv("AUDIO_SAMPLE_RATE", "16000")))
AUDIO_BLOCK_MS = max(10, int(os.getenv("AUDIO_BLOCK_MS", "100")))
AUDIO_DEVICE = str(os.getenv("AUDIO_DEVICE") or "").strip() or None
AUDIO_ENABLED = str(os.getenv("AUDIO_ENABLED", "true")).strip().lower() in _TRUTHY

# Presentation / lifecycle
SESSION_CLEANUP_TTL_SEC = max(60, int(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))
MAX_WS_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))


def firestore_configured() -> bool:
    return bool(FIREBASE_PROJECT_ID)
