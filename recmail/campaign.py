from __future__ import annotations

"""
End-to-end email marketing campaign.

Steps, strictly sequential:

1. discover recent evaluation records and select the admired model;
2. load recipients (none is a hard stop) and candidate SKUs;
3. score every recipient x SKU pair in one batch and keep the top-N;
4. send personalized batches, stopping at the first rejected batch.

Every error is caught once, here, logged as critical and reported through
:class:`~recmail.config.CampaignResult` so callers can tell a full send from
a partial one or from a run that never reached the provider.
"""

import argparse
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger

from .config import LOG_DIR, LOG_FILE_NAME, CampaignConfig, CampaignResult
from .dispatch import EmailSender, require_template_id, dispatch_batches
from .email_client import SendGridClient
from .errors import ConfigurationError, NoCandidateModelError, NoRecipientsError, RecmailError
from .loaders import load_recipients, load_skus
from .metric_store import LocalMetricStore, MetricStore
from .model_selector import pick_best
from .pipeline_types import RankedCandidate
from .recommend import recommend_top_products


def describe_error(error: Optional[BaseException]) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, RecmailError):
        return type(error).__name__
    return f"{type(error).__module__}.{type(error).__name__}"


@dataclass
class _Progress:
    candidate: Optional[RankedCandidate] = None
    recipients_total: int = 0


class CampaignRunner:
    """
    Runs one campaign with explicitly supplied collaborators.

    ``store`` defaults to a :class:`LocalMetricStore` over ``config.metrics_dir``;
    ``client`` defaults to a :class:`SendGridClient` built from the config and
    closed after the run.  ``model`` bypasses loading the selected model blob.
    """

    def __init__(
        self,
        config: CampaignConfig,
        store: Optional[MetricStore] = None,
        client: Optional[EmailSender] = None,
        model: Optional[object] = None,
    ):
        self.config = config
        self.store = store if store is not None else LocalMetricStore(config.metrics_dir)
        self.client = client
        self.model = model

    def run(self, template_id: str) -> CampaignResult:
        progress = _Progress()
        try:
            return self._run(template_id, progress)
        except NoCandidateModelError as e:
            logger.warning("No admired model found: {}", e)
            return self._result(template_id, progress, status="skipped", error=e)
        except Exception as e:
            logger.opt(exception=e).critical("Email marketing failed: {}", e)
            return self._result(
                template_id,
                progress,
                status="failed",
                skipped=progress.recipients_total,
                error=e,
            )

    def _run(self, template_id: str, progress: _Progress) -> CampaignResult:
        cfg = self.config
        template_id = require_template_id(template_id)

        candidates = self.store.get_recent(cfg.metrics_limit, cfg.models_prefix)
        if not candidates:
            logger.warning("No candidate models under {}; nothing to send", cfg.models_prefix)
            return self._result(template_id, progress, status="skipped")

        admired = pick_best(candidates)
        if admired is None:
            raise NoCandidateModelError(
                f"None of {len(candidates)} evaluation records has a usable metric"
            )
        progress.candidate = admired

        recipients = load_recipients(cfg.recipients_path)
        if not recipients:
            raise NoRecipientsError(f"No recipients found in {cfg.recipients_path}")
        progress.recipients_total = len(recipients)

        skus: List[int] = load_skus(cfg.skus_path)

        recs = recommend_top_products(
            self.store,
            admired,
            recipients,
            skus,
            top_n=cfg.top_n,
            legacy_inverted_email_filter=cfg.legacy_inverted_email_filter,
            model=self.model,
        )

        if self.client is not None:
            outcome = dispatch_batches(
                self.client, recipients, admired, template_id, recs, cfg.batch_size, cfg.sender
            )
        else:
            with SendGridClient(
                cfg.sendgrid_api_key.get_secret_value(), base_url=cfg.sendgrid_base_url
            ) as client:
                outcome = dispatch_batches(
                    client, recipients, admired, template_id, recs, cfg.batch_size, cfg.sender
                )

        if outcome.error is None and outcome.skipped == 0:
            status = "succeeded"
        elif outcome.accepted > 0:
            status = "partial"
        else:
            status = "failed"

        return self._result(
            template_id,
            progress,
            status=status,
            accepted=outcome.accepted,
            failed=outcome.failed,
            skipped=outcome.skipped,
            batches_sent=outcome.batches_sent,
            error=outcome.error,
        )

    @staticmethod
    def _result(
        template_id: str,
        progress: _Progress,
        *,
        status: str,
        accepted: int = 0,
        failed: int = 0,
        skipped: int = 0,
        batches_sent: int = 0,
        error: Optional[BaseException] = None,
    ) -> CampaignResult:
        cand = progress.candidate
        return CampaignResult(
            status=status,
            template_id=template_id or "",
            model_file=cand.file_name if cand else None,
            model_score=cand.score if cand else None,
            recipients_total=progress.recipients_total,
            accepted=accepted,
            failed=failed,
            skipped=skipped,
            batches_sent=batches_sent,
            error_kind=describe_error(error),
            error=str(error) if error is not None else None,
        )


def run_campaign(template_id: str, config: Optional[CampaignConfig] = None) -> CampaignResult:
    """
    Run a campaign for ``template_id``; config defaults to ``CampaignConfig.from_env()``.
    """
    return CampaignRunner(config or CampaignConfig.from_env()).run(template_id)


# ---------------------------
# CLI entrypoint
# ---------------------------

def configure_logging(level: str = "INFO") -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(LOG_DIR / LOG_FILE_NAME, level=level, rotation="10 MB", retention=5)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Send a recommendation email campaign.")
    parser.add_argument("--template-id", required=True, help="Email provider dynamic template id")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--top-n", type=int, default=None)
    parser.add_argument(
        "--legacy-email-filter",
        action="store_true",
        help="Score only recipients WITHOUT an email (historical behaviour)",
    )
    args = parser.parse_args(argv)

    configure_logging()

    try:
        config = CampaignConfig.from_env()
    except ConfigurationError as e:
        logger.critical("Campaign configuration unavailable: {}", e)
        result = CampaignResult(
            status="failed", template_id=args.template_id, error_kind=describe_error(e), error=str(e)
        )
        print(result.model_dump_json(indent=2))
        return 1

    updates = {}
    if args.batch_size is not None:
        updates["batch_size"] = args.batch_size
    if args.top_n is not None:
        updates["top_n"] = args.top_n
    if args.legacy_email_filter:
        updates["legacy_inverted_email_filter"] = True
    if updates:
        config = CampaignConfig.model_validate({**config.model_dump(), **updates})

    result = CampaignRunner(config).run(args.template_id)
    print(result.model_dump_json(indent=2))
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    # python -m recmail.campaign --template-id d-123
    sys.exit(main())
