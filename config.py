import os

from dotenv import load_dotenv

load_dotenv()

APP_NAME = os.getenv("APP_NAME", "BinBeacon API")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24 * 14))  # 14 days

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

WS_PATH = os.getenv("WS_PATH", "/ws")

# Delhi, [lng, lat]
DEFAULT_COORDINATES = [77.209, 28.6139]

DEFAULT_BEACON_SCORE = 80
MIN_BEACON_FOR_AVAILABILITY = 50
SEGREGATION_PENALTY = 10
