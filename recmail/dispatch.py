from __future__ import annotations

"""
Batch delivery of personalized campaign emails.

Recipients are cut into consecutive batches; each batch becomes one provider
message carrying one personalization per recipient.  Batches go out strictly
one after another and the first batch the provider does not accept ends the
run: earlier batches stay sent, later batches are never attempted.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, TypeVar

from loguru import logger

from .config import DEFAULT_SENDER_EMAIL, DEFAULT_SENDER_NAME, SenderAddress
from .email_client import EmailResponse
from .errors import EmailProviderRejected, TemplateIdRequired
from .pipeline_types import RankedCandidate, Recipient, RecommendationEntry

T = TypeVar("T")


class EmailSender(Protocol):
    def send(self, message: Dict[str, Any]) -> EmailResponse:
        ...


@dataclass
class DispatchResult:
    accepted: int = 0
    failed: int = 0
    skipped: int = 0
    batches_sent: int = 0
    error: Optional[Exception] = None


def chunk(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Consecutive slices of at most ``size`` items; only the last may be short."""
    if size <= 0:
        raise ValueError(f"batch size must be > 0, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def require_template_id(template_id: Optional[str]) -> str:
    if template_id is None or not str(template_id).strip():
        raise TemplateIdRequired("An email template id is required for campaign sends")
    return str(template_id).strip()


def _default_sender() -> SenderAddress:
    return SenderAddress(email=DEFAULT_SENDER_EMAIL, name=DEFAULT_SENDER_NAME)


def build_personalization(
    recipient: Recipient,
    candidate: RankedCandidate,
    recs: Iterable[RecommendationEntry],
) -> Dict[str, Any]:
    to: Dict[str, str] = {"email": recipient.email}
    if recipient.display_name:
        to["name"] = recipient.display_name

    return {
        "to": [to],
        "dynamic_template_data": {
            "firstName": recipient.first_name,
            "segment": recipient.segment,
            "modelFile": candidate.file_name,
            "modelScore": candidate.score,
            "recommendations": [{"sku": e.sku, "score": e.score} for e in recs],
        },
    }


def _has_address(recipient: Recipient) -> bool:
    return bool(recipient.email and recipient.email.strip())


def build_personalized_message(
    batch: Iterable[Recipient],
    candidate: RankedCandidate,
    template_id: str,
    recommendations: Mapping[str, List[RecommendationEntry]],
    sender: Optional[SenderAddress] = None,
) -> Dict[str, Any]:
    """
    One SendGrid v3 message for a batch, one personalization per recipient.

    Recipients missing from ``recommendations`` get an empty list.  Recipients
    without an email address get no personalization.
    """
    template_id = require_template_id(template_id)
    sender = sender or _default_sender()

    from_block: Dict[str, str] = {"email": sender.email}
    if sender.name:
        from_block["name"] = sender.name

    return {
        "from": from_block,
        "template_id": template_id,
        "personalizations": [
            build_personalization(r, candidate, recommendations.get(r.email) or [])
            for r in batch
            if _has_address(r)
        ],
    }


def dispatch_batches(
    client: EmailSender,
    recipients: Sequence[Recipient],
    candidate: RankedCandidate,
    template_id: str,
    recommendations: Mapping[str, List[RecommendationEntry]],
    batch_size: int,
    sender: Optional[SenderAddress] = None,
) -> DispatchResult:
    """
    Send every batch in order, stopping at the first one that is not accepted.

    Recipients without an email address are never batched and count as skipped.
    Any exception raised by ``client.send`` fails that batch the same way a
    rejection does; batches accepted before it keep their counts.
    """
    template_id = require_template_id(template_id)
    addressable = [r for r in recipients if _has_address(r)]
    unaddressable = len(recipients) - len(addressable)
    if unaddressable:
        logger.warning("Skipping {} recipients without an email address", unaddressable)

    batches = list(chunk(addressable, batch_size))
    total = len(recipients)
    result = DispatchResult(skipped=unaddressable)

    for i, batch in enumerate(batches, start=1):
        message = build_personalized_message(batch, candidate, template_id, recommendations, sender)
        result.batches_sent += 1
        try:
            resp = client.send(message)
        except Exception as e:
            logger.opt(exception=e).error("Send failure on batch {}/{}: {}", i, len(batches), e)
            result.error = e
        else:
            if resp.accepted:
                result.accepted += len(batch)
                logger.info(
                    "Provider accepted batch {}/{} of {}. Total accepted so far: {}",
                    i,
                    len(batches),
                    len(batch),
                    result.accepted,
                )
                continue
            logger.error("Provider error: {} on batch {}/{}", resp.status_code, i, len(batches))
            logger.error("Provider response body: {}", resp.body)
            result.error = EmailProviderRejected(resp.status_code, resp.body)

        result.failed = len(batch)
        result.skipped = total - result.accepted - result.failed
        if result.skipped > unaddressable:
            logger.warning(
                "Stopping after failed batch; {} recipients not attempted",
                result.skipped - unaddressable,
            )
        break

    logger.info("Done. Total recipients accepted for sending: {}", result.accepted)
    return result
