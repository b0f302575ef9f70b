from typing import Dict
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


load_dotenv()


class MatchingConfig(BaseModel):
    """
    Tunables for supplier matching.
    Injected into the matcher so tests can vary weights without patching globals.
    """
    tier_weight: float = 1.0
    rating_weight: float = 1.0
    response_rate_weight: float = 0.0
    cap: int = 10

    tier_scores: Dict[str, float] = {
        "unverified": 0.0,
        "pending": 0.0,
        "verified": 1.0,
        "trusted": 2.0,
        "premium": 3.0,
    }

    # Material category (catalog) -> supplier category label (directory)
    category_map: Dict[str, str] = {
        "bricks": "Bricks & Blocks",
        "cement": "Cement & Concrete",
        "sand": "Aggregates & Sand",
        "aggregates": "Aggregates & Sand",
        "steel": "Steel & Metal",
        "roofing": "Roofing Materials",
        "timber": "Timber & Wood",
        "electrical": "Electrical Supplies",
        "plumbing": "Plumbing Supplies",
        "finishes": "Paint & Finishes",
        "hardware": "Hardware & Fasteners",
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__")

    app_name: str = "Material RFQ API"
    debug: bool = False
    database_url: str = ""
    host: str = "127.0.0.1"
    port: int = 8000
    secret_key: str = ""
    allowed_hosts: str = ""
    log_file: str = "logs/application.log"

    # Storage
    db_timeout_seconds: float = 5.0

    # Workflow
    rfq_expiry_days: int = 7

    # Notifications
    notification_channels: str = "email,whatsapp"
    notification_mock: bool = False
    notification_batch_size: int = 25
    # Comma-separated user ids allowed to drain the outbox on demand. Empty: nobody.
    notification_operator_ids: str = ""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "rfq@localhost"

    whatsapp_api_url: str = "https://graph.facebook.com/v19.0"
    whatsapp_phone_id: str = ""
    whatsapp_token: str = ""
    whatsapp_timeout_seconds: float = 10.0

    matching: MatchingConfig = MatchingConfig()


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")
