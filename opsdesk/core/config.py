import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()

class DraftSettings(BaseModel):
    # Bump schema_version whenever the draft payload changes shape; older drafts are discarded
    schema_version: int = Field(default=int(os.getenv("PAYROLL_DRAFT_VERSION", "1")))
    save_delay: float = Field(default=float(os.getenv("PAYROLL_DRAFT_DELAY", "0.5")))
    key_prefix: str = Field(default=os.getenv("PAYROLL_DRAFT_PREFIX", "payroll_draft"))

class Config(BaseModel):
    app_name: str = "Opsdesk Payroll"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./opsdesk.db")

    # Payroll rules
    labour_hours_per_day: float = 8.0
    ot_multiplier: float = 1.25
    absence_penalty_threshold: int = 3
    staff_days_in_month: int = 30

    # Local drafts
    drafts: DraftSettings = DraftSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # CORS: comma-separated origins loaded from env
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:5173,"
                "http://127.0.0.1:3000,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]
    )

settings = Config()

_logger = logging.getLogger(__name__)
if settings.environment != "development" and settings.database_url.startswith("sqlite:///./"):
    _logger.warning("Using the local SQLite file outside development; set DATABASE_URL.")
