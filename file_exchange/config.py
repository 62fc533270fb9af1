import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent

FILES_DIR = os.getenv("FILES_DIR", "uploads")   # directory managed by the service
PUBLIC_DIR = os.getenv("PUBLIC_DIR", str(PACKAGE_DIR / "public"))
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))
ADMIN_KEY = os.getenv("ADMIN_KEY", "130611")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024
