from datetime import datetime, timezone

import httpx
import pytest

from recmail.config import SenderAddress
from recmail.dispatch import build_personalized_message, chunk, dispatch_batches
from recmail.email_client import EmailResponse
from recmail.errors import EmailProviderRejected, TemplateIdRequired
from recmail.pipeline_types import (
    EvaluationRecord,
    RankedCandidate,
    Recipient,
    RecipientRecommendations,
    RecommendationEntry,
)


class DummyClient:
    """Returns queued status codes in order; records every message sent."""

    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        return EmailResponse(self.statuses.pop(0), body="provider says no")


CANDIDATE = RankedCandidate(
    record=EvaluationRecord("m", "models/m.pkl", datetime(2024, 1, 1, tzinfo=timezone.utc), {"auc": 0.8}),
    score=0.8,
)


def _recipients(n):
    return [Recipient(f"user{i}@example.com", i, "Valued", "Customer", "Example") for i in range(n)]


@pytest.mark.parametrize("n,size", [(1, 1), (3, 2), (10, 3), (9, 3), (5, 900)])
def test_chunk_is_exhaustive_and_bounded(n, size):
    items = list(range(n))
    batches = list(chunk(items, size))

    assert [x for b in batches for x in b] == items
    assert all(len(b) <= size for b in batches)
    assert all(len(b) == size for b in batches[:-1])


def test_chunk_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunk([1], 0))


def test_build_message_personalizations():
    recs = RecipientRecommendations([("USER0@example.com", [RecommendationEntry(7, 0.9)])])
    msg = build_personalized_message(
        _recipients(2), CANDIDATE, "d-123", recs, SenderAddress(email="m@co.com", name="Co")
    )

    assert msg["from"] == {"email": "m@co.com", "name": "Co"}
    assert msg["template_id"] == "d-123"
    assert len(msg["personalizations"]) == 2

    first = msg["personalizations"][0]
    assert first["to"] == [{"email": "user0@example.com", "name": "Valued Customer"}]
    data = first["dynamic_template_data"]
    assert data["firstName"] == "Valued"
    assert data["segment"] == "Example"
    assert data["modelFile"] == "models/m.pkl"
    assert data["modelScore"] == 0.8
    assert data["recommendations"] == [{"sku": 7, "score": 0.9}]

    # absent from the mapping -> empty list
    assert msg["personalizations"][1]["dynamic_template_data"]["recommendations"] == []


@pytest.mark.parametrize("template_id", ["", "   ", None])
def test_blank_template_id_fails_before_any_send(template_id):
    client = DummyClient([202])
    with pytest.raises(TemplateIdRequired):
        dispatch_batches(client, _recipients(3), CANDIDATE, template_id, {}, 2)
    assert client.sent == []


def test_all_batches_accepted():
    client = DummyClient([202, 200])
    result = dispatch_batches(client, _recipients(3), CANDIDATE, "d-1", {}, 2)

    assert [len(m["personalizations"]) for m in client.sent] == [2, 1]
    assert result.accepted == 3
    assert result.batches_sent == 2
    assert result.error is None


def test_first_batch_failure_stops_everything():
    client = DummyClient([500, 202])
    result = dispatch_batches(client, _recipients(3), CANDIDATE, "d-1", {}, 2)

    assert len(client.sent) == 1
    assert result.accepted == 0
    assert result.failed == 2
    assert result.skipped == 1
    assert isinstance(result.error, EmailProviderRejected)
    assert result.error.status_code == 500
    assert result.error.body == "provider says no"


def test_later_failure_keeps_earlier_batches():
    client = DummyClient([202, 429, 202])
    result = dispatch_batches(client, _recipients(5), CANDIDATE, "d-1", {}, 2)

    assert len(client.sent) == 2
    assert result.accepted == 2
    assert result.failed == 2
    assert result.skipped == 1
    assert result.batches_sent == 2


def test_transport_error_stops_like_a_rejection():
    class Flaky:
        def __init__(self):
            self.calls = 0

        def send(self, message):
            self.calls += 1
            raise httpx.ConnectError("boom")

    client = Flaky()
    result = dispatch_batches(client, _recipients(4), CANDIDATE, "d-1", {}, 2)
    assert client.calls == 1
    assert result.accepted == 0
    assert isinstance(result.error, httpx.ConnectError)


def test_send_exception_after_accepted_batch_keeps_counts():
    class BreaksOnSecond:
        def __init__(self):
            self.calls = 0

        def send(self, message):
            self.calls += 1
            if self.calls == 2:
                raise RuntimeError("socket closed")
            return EmailResponse(202)

    client = BreaksOnSecond()
    result = dispatch_batches(client, _recipients(5), CANDIDATE, "d-1", {}, 2)

    assert client.calls == 2
    assert result.accepted == 2
    assert result.failed == 2
    assert result.skipped == 1
    assert result.batches_sent == 2
    assert isinstance(result.error, RuntimeError)


def test_recipients_without_email_are_skipped_not_sent():
    client = DummyClient([202])
    recipients = [Recipient("a@x.com", 1), Recipient("", 2), Recipient("   ", 3)]
    result = dispatch_batches(client, recipients, CANDIDATE, "d-1", {}, 2)

    assert len(client.sent) == 1
    assert [p["to"] for p in client.sent[0]["personalizations"]] == [[{"email": "a@x.com"}]]
    assert result.accepted == 1
    assert result.skipped == 2
    assert result.accepted + result.failed + result.skipped == len(recipients)


def test_blank_email_counts_survive_a_failed_batch():
    client = DummyClient([500])
    recipients = [Recipient("", 0)] + _recipients(3)
    result = dispatch_batches(client, recipients, CANDIDATE, "d-1", {}, 2)

    assert result.failed == 2
    assert result.skipped == 2
    assert result.accepted + result.failed + result.skipped == len(recipients)
