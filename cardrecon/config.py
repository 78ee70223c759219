from __future__ import annotations
import os
from dataclasses import dataclass
from decimal import Decimal

from dotenv import load_dotenv

@dataclass(frozen=True)
class Settings:
    database_url: str
    match_window_days: int
    exact_tolerance: Decimal
    close_tolerance: Decimal
    payment_markers: tuple[str, ...]
    regex_timeout: float  # seconds per search attempt
    log_level: str

def build_settings() -> Settings:
    load_dotenv()
    markers = os.getenv("PAYMENT_MARKERS", "pagamento recebido,payment received")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./cardrecon.db"),
        match_window_days=int(os.getenv("MATCH_WINDOW_DAYS", "45")),
        exact_tolerance=Decimal(os.getenv("EXACT_TOLERANCE", "0.01")),
        close_tolerance=Decimal(os.getenv("CLOSE_TOLERANCE", "10.00")),
        payment_markers=tuple(m.strip() for m in markers.split(",") if m.strip()),
        regex_timeout=float(os.getenv("REGEX_TIMEOUT_SECONDS", "0.05")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

settings = build_settings()
