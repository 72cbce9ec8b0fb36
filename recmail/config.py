from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from .errors import ConfigurationError


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
RECIPIENTS_PATH = DATA_DIR / "recipients.csv"
SKUS_PATH = DATA_DIR / "skus.csv"

# Root of the local object store; metric records live under METRICS_DIR / MODELS_PREFIX
METRICS_DIR = DATA_DIR / "metrics"


# ---------------------------
# Model discovery
# ---------------------------

MODELS_PREFIX = "models/"
RECENT_METRICS_LIMIT = 100  # only the most recent evaluations are considered

# Selector priority: higher-is-better metrics first, first hit wins
HIGHER_IS_BETTER_METRICS: List[str] = [
    "auc",
    "accuracy",
    "macro_accuracy",
    "f1_score",
    "r_squared",
]
# Error metrics, mapped to 1 / (1 + err) when nothing above is present
LOWER_IS_BETTER_METRICS: List[str] = [
    "rmse",
    "mean_absolute_error",
]


# ---------------------------
# Recommendation / batching policy
# ---------------------------

TOP_N = 5
BATCH_SIZE = 900  # provider limits vary per account

DEFAULT_FIRST_NAME = "Valued"
DEFAULT_LAST_NAME = "Customer"
DEFAULT_SEGMENT = "Example"


# ---------------------------
# Email provider
# ---------------------------

SENDGRID_BASE_URL = "https://api.sendgrid.com"
SENDGRID_SEND_PATH = "/v3/mail/send"

HTTP_CONNECT_TIMEOUT = 5.0
HTTP_READ_TIMEOUT = 30.0

DEFAULT_SENDER_EMAIL = "marketing@yourcompany.com"
DEFAULT_SENDER_NAME = "Your Company"


# ---------------------------
# Logging / observability
# ---------------------------

LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE_NAME = "campaign.log"


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class SenderAddress(BaseModel):
    """
    The ``from`` block of every outgoing message.
    """

    email: str
    name: str = ""


class CampaignConfig(BaseModel):
    """
    Everything one campaign run needs, passed explicitly at construction.

    Only :meth:`from_env` looks at the process environment.
    """

    sendgrid_api_key: SecretStr
    sendgrid_base_url: str = SENDGRID_BASE_URL
    sender: SenderAddress = Field(
        default_factory=lambda: SenderAddress(email=DEFAULT_SENDER_EMAIL, name=DEFAULT_SENDER_NAME)
    )

    metrics_dir: Path = METRICS_DIR
    models_prefix: str = MODELS_PREFIX
    metrics_limit: int = Field(default=RECENT_METRICS_LIMIT, gt=0)

    recipients_path: Path = RECIPIENTS_PATH
    skus_path: Path = SKUS_PATH

    top_n: int = Field(default=TOP_N, gt=0)
    batch_size: int = Field(default=BATCH_SIZE, gt=0)

    # Reproduces the historical filter that scored only recipients WITHOUT an email.
    legacy_inverted_email_filter: bool = False

    @classmethod
    def from_env(cls) -> "CampaignConfig":
        """
        Build a config from environment variables.

        SENDGRID_API_KEY is required; RECMAIL_* variables override paths and sizes.
        """
        api_key = os.getenv("SENDGRID_API_KEY", "")
        if not api_key.strip():
            raise ConfigurationError("SENDGRID_API_KEY is not set")

        data_dir = Path(os.getenv("RECMAIL_DATA_DIR", str(DATA_DIR)))
        try:
            return cls(
                sendgrid_api_key=SecretStr(api_key),
                metrics_dir=Path(os.getenv("RECMAIL_METRICS_DIR", str(data_dir / "metrics"))),
                recipients_path=data_dir / RECIPIENTS_PATH.name,
                skus_path=data_dir / SKUS_PATH.name,
                top_n=int(os.getenv("RECMAIL_TOP_N", str(TOP_N))),
                batch_size=int(os.getenv("RECMAIL_BATCH_SIZE", str(BATCH_SIZE))),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid campaign configuration: {e}") from e


class CampaignRequest(BaseModel):
    """
    Request body for POST /campaigns.
    """

    template_id: str = Field(min_length=1)

    @field_validator("template_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("template_id must not be blank")
        return v.strip()


CampaignStatus = Literal["succeeded", "partial", "failed", "skipped"]


class CampaignResult(BaseModel):
    """
    Outcome of one campaign run.

    ``accepted + failed + skipped == recipients_total`` whenever recipients were loaded.
    """

    status: CampaignStatus
    template_id: str
    model_file: Optional[str] = None
    model_score: Optional[float] = None
    recipients_total: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    batches_sent: int = Field(default=0, ge=0)
    error_kind: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str
