# src/config.py

import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv()


class Settings(BaseModel):
    """Runtime knobs for the booking workflow clients."""

    model_config = ConfigDict(frozen=True)

    api_base_url: str = "http://localhost:8000"
    http_timeout_seconds: float = 10.0
    max_seats_per_booking: int = 6
    hold_ttl_seconds: int = 600
    confirm_max_attempts: int = 3
    confirm_retry_delay: float = 1.0
    checkout_grace_seconds: float = 120.0
    currency: str = "INR"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_base_url=os.getenv("BOOKING_API_URL", "http://localhost:8000"),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
            max_seats_per_booking=int(os.getenv("MAX_SEATS_PER_BOOKING", "6")),
            hold_ttl_seconds=int(os.getenv("HOLD_TTL_SECONDS", "600")),
            confirm_max_attempts=int(os.getenv("CONFIRM_MAX_ATTEMPTS", "3")),
            confirm_retry_delay=float(os.getenv("CONFIRM_RETRY_DELAY", "1.0")),
            checkout_grace_seconds=float(os.getenv("CHECKOUT_GRACE_SECONDS", "120")),
            currency=os.getenv("BOOKING_CURRENCY", "INR"),
        )
