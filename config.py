import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings, read from the environment once per process."""
    database_url: str = Field("mongodb://localhost:27017")
    database_name: str = Field("restaurant")
    mongo_transactions: bool = Field(False, description="Use multi-document transactions for batches")
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    payment_currency: str = Field("INR")
    bedrock_model_id: str = Field("amazon.nova-lite-v1:0")
    aws_region: str = Field("us-east-1")
    log_level: str = Field("INFO")
    port: int = Field(8000)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    load_dotenv()
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "restaurant"),
        mongo_transactions=_flag("MONGO_TRANSACTIONS"),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID") or None,
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
        payment_currency=os.getenv("PAYMENT_CURRENCY", "INR"),
        bedrock_model_id=os.getenv("BEDROCK_MODEL_ID", "amazon.nova-lite-v1:0"),
        aws_region=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
        log_level=os.getenv("LOGLEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", 8000)),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
