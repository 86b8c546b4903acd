"""Configuration for the Incorporation Order Wizard"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
PORT = int(os.getenv("PORT", "8001"))

# Seconds before a recommendation call is abandoned
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))

# Recommendation calls that must succeed (comma-separated call names).
# Anything not listed here degrades to its static fallback on failure.
STRICT_RECOMMENDATIONS = frozenset(
    name.strip() for name in os.getenv("STRICT_RECOMMENDATIONS", "").split(",") if name.strip()
)

# Per-session JSONL action logs
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).parent.parent / "logs")))

# Model IDs
MODEL_SMART = "claude-sonnet-4-5-20250929"
MODEL_FAST = "claude-haiku-4-5-20251001"
