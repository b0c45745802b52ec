"""Path configuration for the backend."""
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=BASE_DIR / ".env")

# Directories
MODELS_DIR = BASE_DIR / "models"
DEFAULT_CAPTURE_DIR = BASE_DIR / "data" / "captures"
