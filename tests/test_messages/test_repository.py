"""Tests for the message repository facade."""

import threading

import pytest

from ambient_inbox.config import BackoffPolicy
from ambient_inbox.exceptions import InvalidTransitionError, MessageNotFoundError
from ambient_inbox.messages.models import Bucket, MessageStatus
from ambient_inbox.messages.repository import MessageRepository


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(clock):
    return MessageRepository(clock=clock)


def test_ingest_creates_received_message(repo, clock):
    message_id = repo.ingest("com.slack", "Team", "Please review the PR", thread_key="com.slack:Team")
    message = repo.get_message(message_id)
    assert message.status is MessageStatus.RECEIVED
    assert message.timestamp == clock.now
    assert message.original_content == "Please review the PR"
    assert message.thread_key == "com.slack:Team"
    assert message.veiled_content is None
    assert message.bucket is None
    assert message.generated_responses == ()
    assert message.retry_count == 0
    assert message.snoozed_until == 0


def test_ingest_assigns_increasing_ids(repo):
    ids = [repo.ingest("sms", "Bob", f"hi {i}") for i in range(5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_concurrent_ingest_from_threads(repo):
    ids = []
    lock = threading.Lock()

    def worker(n):
        for i in range(10):
            message_id = repo.ingest("sms", f"sender{n}", f"message {i}")
            with lock:
                ids.append(message_id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ids) == 200
    assert len(set(ids)) == 200
    assert len(repo.messages()) == 200


def test_get_missing_message_returns_none(repo):
    assert repo.get_message(999) is None


def test_messages_newest_first_with_stable_ties(repo, clock):
    first = repo.ingest("sms", "A", "one")
    second = repo.ingest("sms", "B", "two")
    clock.now += 10
    third = repo.ingest("sms", "C", "three")
    assert [m.id for m in repo.messages()] == [third, first, second]


def test_visible_messages_excludes_snoozed(repo, clock):
    shown = repo.ingest("sms", "A", "one")
    hidden = repo.ingest("sms", "B", "two")
    repo.snooze_message(hidden, clock.now + 60_000)

    assert [m.id for m in repo.visible_messages()] == [shown]

    clock.now += 60_000
    assert {m.id for m in repo.visible_messages()} == {shown, hidden}


def test_snooze_leaves_status_and_retry_count(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    message = repo.snooze_message(message_id, clock.now + 5_000)
    assert message.status is MessageStatus.RECEIVED
    assert message.retry_count == 0
    assert message.snoozed_until == clock.now + 5_000


def test_user_snooze_cannot_shorten_retry_backoff(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    failed = repo.record_failure(message_id, clock.now, max_retries=5, backoff=BackoffPolicy(10_000, 60_000))
    assert failed.snoozed_until == clock.now + 10_000

    shorter = repo.snooze_message(message_id, clock.now + 1_000)
    assert shorter.snoozed_until == clock.now + 10_000

    longer = repo.snooze_message(message_id, clock.now + 30_000)
    assert longer.snoozed_until == clock.now + 30_000
    assert longer.retry_count == 1
    assert longer.status is MessageStatus.RETRY


def test_unsnooze_keeps_retry_backoff(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    repo.record_failure(message_id, clock.now, max_retries=5, backoff=BackoffPolicy(10_000, 60_000))

    message = repo.snooze_message(message_id, 0)
    assert message.snoozed_until == clock.now + 10_000
    assert not message.is_eligible(clock.now)


def test_unsnooze_received_message(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    repo.snooze_message(message_id, clock.now + 5_000)
    assert repo.snooze_message(message_id, 0).snoozed_until == 0


def test_failure_keeps_longer_user_snooze(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    hour_later = clock.now + 3_600_000
    repo.snooze_message(message_id, hour_later)

    failed = repo.record_failure(message_id, clock.now, max_retries=5, backoff=BackoffPolicy(1_000, 60_000))
    assert failed.status is MessageStatus.RETRY
    assert failed.snoozed_until == hour_later

    clock.now += 2_000
    assert repo.visible_messages() == []


def test_permanent_failure_keeps_user_snooze(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    hour_later = clock.now + 3_600_000
    repo.snooze_message(message_id, hour_later)

    failed = repo.record_failure(message_id, clock.now, max_retries=1, backoff=BackoffPolicy())
    assert failed.status is MessageStatus.FAILED
    assert failed.snoozed_until == hour_later


def test_snooze_missing_message_raises(repo):
    with pytest.raises(MessageNotFoundError):
        repo.snooze_message(404, 1)


def test_update_state_requires_grouped_fields(repo):
    message_id = repo.ingest("sms", "A", "one")
    with pytest.raises(ValueError, match="together"):
        repo.update_state(message_id, MessageStatus.PROCESSED, veiled_content="New notification")


def test_update_state_replaces_group(repo):
    message_id = repo.ingest("sms", "A", "one")
    message = repo.update_state(
        message_id,
        MessageStatus.PROCESSED,
        veiled_content="New message from A",
        bucket=Bucket.SOCIAL,
        generated_responses=["ok", "sure"],
    )
    assert message.bucket is Bucket.SOCIAL
    assert message.veiled_content == "New message from A"
    assert message.generated_responses == ("ok", "sure")


def test_update_state_rejects_invalid_transition(repo):
    message_id = repo.ingest("sms", "A", "one")
    repo.dismiss(message_id)
    with pytest.raises(InvalidTransitionError):
        repo.update_state(message_id, MessageStatus.PROCESSED)


def test_update_state_missing_message(repo):
    with pytest.raises(MessageNotFoundError):
        repo.update_state(12345, MessageStatus.SENT)


def test_send_flow(repo, clock):
    message_id = repo.ingest("com.whatsapp", "Mom", "Dinner?")
    repo.complete_processing(message_id, Bucket.SOCIAL, "New message from Mom", ["Yes!", "Can't tonight"])
    repo.snooze_message(message_id, clock.now + 1_000)

    queued = repo.queue_for_sending(message_id, "Yes!")
    assert queued.status is MessageStatus.QUEUED
    assert queued.selected_response == "Yes!"

    sent = repo.mark_as_sent(message_id)
    assert sent.status is MessageStatus.SENT
    assert sent.snoozed_until == 0
    assert sent.selected_response == "Yes!"

    with pytest.raises(InvalidTransitionError):
        repo.dismiss(message_id)


def test_clear_selected_response(repo):
    message_id = repo.ingest("com.whatsapp", "Mom", "Dinner?")
    repo.complete_processing(message_id, Bucket.SOCIAL, "New message from Mom", ["Yes!"])
    repo.queue_for_sending(message_id, "Yes!")

    message = repo.clear_selected_response(message_id)
    assert message.selected_response is None
    assert message.status is MessageStatus.PROCESSED


def test_clear_selected_response_on_sent_message_raises(repo):
    message_id = repo.ingest("com.whatsapp", "Mom", "Dinner?")
    repo.complete_processing(message_id, Bucket.SOCIAL, "New message from Mom", ["Yes!"])
    repo.queue_for_sending(message_id, "Yes!")
    repo.mark_as_sent(message_id)
    with pytest.raises(InvalidTransitionError):
        repo.clear_selected_response(message_id)


def test_mark_retry_after_failed_send(repo, clock):
    message_id = repo.ingest("com.whatsapp", "Mom", "Dinner?")
    repo.complete_processing(message_id, Bucket.SOCIAL, "New message from Mom", ["Yes!"])
    message = repo.mark_retry(message_id, clock.now + 2_000)
    assert message.status is MessageStatus.RETRY
    assert message.retry_count == 1
    assert message.snoozed_until == clock.now + 2_000


def test_complete_processing_preserves_selected_response(repo):
    message_id = repo.ingest("sms", "A", "one")
    repo.update_state(message_id, MessageStatus.RECEIVED, selected_response="draft reply")
    message = repo.complete_processing(message_id, Bucket.UNKNOWN, "New notification", ["ok"])
    assert message.status is MessageStatus.PROCESSED
    assert message.selected_response == "draft reply"


def test_complete_processing_refuses_non_engine_states(repo):
    message_id = repo.ingest("sms", "A", "one")
    repo.complete_processing(message_id, Bucket.UNKNOWN, "New notification", ["ok"])
    repo.queue_for_sending(message_id, "ok")
    with pytest.raises(InvalidTransitionError):
        repo.complete_processing(message_id, Bucket.UNKNOWN, "New notification", ["other"])
    assert repo.get_message(message_id).status is MessageStatus.QUEUED


def test_record_failure_retries_then_fails(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    policy = BackoffPolicy(base_ms=100, max_ms=1_000)

    first = repo.record_failure(message_id, clock.now, max_retries=3, backoff=policy)
    assert first.status is MessageStatus.RETRY
    assert first.retry_count == 1
    assert first.snoozed_until == clock.now + 100

    clock.now = first.snoozed_until
    second = repo.record_failure(message_id, clock.now, max_retries=3, backoff=policy)
    assert second.retry_count == 2
    assert second.snoozed_until == clock.now + 200

    clock.now = second.snoozed_until
    third = repo.record_failure(message_id, clock.now, max_retries=3, backoff=policy)
    assert third.status is MessageStatus.FAILED
    assert third.retry_count == 3
    assert third.snoozed_until == 0


def test_record_failure_keeps_previous_results(repo, clock):
    message_id = repo.ingest("sms", "A", "one")
    repo.complete_processing(message_id, Bucket.SOCIAL, "New message from A", ["ok"])
    repo.mark_retry(message_id, clock.now)
    message = repo.record_failure(message_id, clock.now, max_retries=5, backoff=BackoffPolicy())
    assert message.veiled_content == "New message from A"
    assert message.generated_responses == ("ok",)
    assert message.bucket is Bucket.SOCIAL


def test_messages_by_bucket(repo):
    work = repo.ingest("com.slack", "Team", "review")
    repo.ingest("sms", "A", "hi")
    repo.complete_processing(work, Bucket.WORK, "Work notification from Slack", ["On it"])
    assert [m.id for m in repo.messages_by_bucket(Bucket.WORK)] == [work]
    assert repo.messages_by_bucket(Bucket.SOCIAL) == []


def test_mark_user_interacted(repo):
    message_id = repo.ingest("sms", "A", "hi")
    assert repo.mark_user_interacted(message_id).user_interacted is True


def test_clear_all_never_reuses_ids(repo):
    first = repo.ingest("sms", "A", "hi")
    repo.clear_all()
    assert repo.messages() == []
    assert repo.ingest("sms", "A", "again") > first
