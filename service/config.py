import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portfolio.db")  # e.g. postgresql://user:pass@db:5432/portfolio

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

ALPHAVANTAGE_API_KEY = os.getenv("ALPHAVANTAGE_API_KEY")
FINNHUB_API_KEY = os.getenv("FINNHUB_API_KEY")
ALPHAVANTAGE_DAILY_LIMIT = int(os.getenv("ALPHAVANTAGE_DAILY_LIMIT", "20"))
QUOTE_CACHE_TTL = int(os.getenv("QUOTE_CACHE_TTL", "300"))  # seconds

STARTING_BALANCE = float(os.getenv("STARTING_BALANCE", "100000"))
VR_PUSH_INTERVAL = float(os.getenv("VR_PUSH_INTERVAL", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
