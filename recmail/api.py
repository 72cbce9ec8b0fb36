from __future__ import annotations

"""
FastAPI surface for triggering campaigns.

- GET  /health     liveness
- POST /campaigns  run one campaign for a template id, returns CampaignResult

Configuration is built once from the environment on first use; a broken
environment yields a failed CampaignResult rather than a server error.
"""

from functools import lru_cache

from fastapi import FastAPI
from loguru import logger

from .campaign import CampaignRunner, describe_error
from .config import CampaignConfig, CampaignRequest, CampaignResult, HealthResponse
from .errors import ConfigurationError


@lru_cache(maxsize=1)
def get_config() -> CampaignConfig:
    return CampaignConfig.from_env()


def run_campaign_for(template_id: str) -> CampaignResult:
    try:
        config = get_config()
    except ConfigurationError as e:
        logger.critical("Campaign configuration unavailable: {}", e)
        return CampaignResult(
            status="failed",
            template_id=template_id,
            error_kind=describe_error(e),
            error=str(e),
        )
    return CampaignRunner(config).run(template_id)


app = FastAPI(title="recmail", version="0.1.0")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/campaigns", response_model=CampaignResult)
def create_campaign(req: CampaignRequest) -> CampaignResult:
    logger.info("Campaign requested for template {}", req.template_id)
    return run_campaign_for(req.template_id)
