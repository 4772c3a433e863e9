import os
from pathlib import Path

BASE_DIR = Path(os.getenv("PANCHAYAT_FACE_HOME", Path(__file__).resolve().parents[2]))
DATA_DIR = BASE_DIR / "data"
EMBEDDINGS_DIR = DATA_DIR / "embeddings"
FACES_DIR = DATA_DIR / "uploads"
DB_DIR = DATA_DIR / "database"
MODELS_DIR = BASE_DIR / "models"
LOG_DIR = BASE_DIR / "logs"

# Database path
DB_PATH = DB_DIR / "panchayat_face.db"

# Create directories
EMBEDDINGS_DIR.mkdir(parents=True, exist_ok=True)
FACES_DIR.mkdir(parents=True, exist_ok=True)
DB_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)
