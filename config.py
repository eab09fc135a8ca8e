import os

from dotenv import load_dotenv

load_dotenv()

ENV_NAME = os.getenv("ENV", "development")
PORT = int(os.getenv("PORT", "5000"))

# Storage
MONGO_URI = (
    os.getenv("MONGO_URI")
    or os.getenv("MONGODB_URI")
    or os.getenv("DATABASE_URL")
    or "mongodb://localhost:27017"
)
DATABASE_NAME = os.getenv("DATABASE_NAME", "curamind")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))  # 1 day

# Upstream AI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4")

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:5173",
    "https://cura-mind.vercel.app",
    "https://cura-mind-nine.vercel.app",
    "https://cura-rust.onrender.com",
]
