"""Configuration management for the Bubble chat backend."""
import os
import json
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
IMAGE_API_KEY = os.getenv("IMAGE_API_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# Number of chat views kept in memory
VIEW_CACHE_SIZE = int(os.getenv("VIEW_CACHE_SIZE", "256"))

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173"
).split(",")

# Model Configuration
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")
MEMORY_MODEL = os.getenv("MEMORY_MODEL", "llama-3.1-8b-instant")
CHAT_TEMPERATURE = 0.8
CHAT_TOP_P = 0.9

# Image Generation Configuration
IMAGE_API_BASE_URL = os.getenv("IMAGE_API_BASE_URL", "http://localhost:8080")
IMAGE_TIMEOUT_S = float(os.getenv("IMAGE_TIMEOUT_S", "120.0"))
DEFAULT_IMAGE_MODEL = "nano_banana"
FALLBACK_IMAGE_MODEL = os.getenv("FALLBACK_IMAGE_MODEL", "nano_banana")
# Friendly model name -> backend model id (override with a JSON object)
IMAGE_MODEL_IDS = {
    "nano_banana": "gemini-2.5-flash-image",
    "imagen_4": "imagen-4.0-generate-001",
    **json.loads(os.getenv("IMAGE_MODEL_IDS", "{}")),
}

# Credits
DEFAULT_IMAGE_COST = 1
PRIVILEGED_ROLE = "admin"

# Stream Protocol
METADATA_SENTINEL = "[--METADATA--]"
EVENT_SENTINEL = "[--EVENT--]"

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
