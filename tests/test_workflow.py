"""
Unit tests for the cleaner coordination workflow.
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from src.coordination.repository import WorkflowRepository
from src.coordination.workflow import CoordinationWorkflow
from src.utils.errors import (
    ConcurrentModificationError, InvalidResponseError, StorageError, UnknownTokenError
)
from src.utils.models import CallbackOutcome, Platform, WorkflowExecution, WorkflowStatus


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(fixed_now):
    return Clock(fixed_now)


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.notify_cleaner.return_value = True
    notifier.send_calendar_invite.return_value = True
    notifier.notify_owner_exhausted.return_value = True
    return notifier


@pytest.fixture
def repository(blob_store):
    return WorkflowRepository(blob_store)


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def workflow(repository, notifier, booking_store, workflow_config, clock, sleep):
    return CoordinationWorkflow(repository, notifier, booking_store, workflow_config,
                                owner_email="fallback@example.com", clock=clock, sleep=sleep)


@pytest.fixture
def started(workflow, booking_store, sample_booking, lake_house):
    claim = booking_store.claim(sample_booking, "exec-1")
    return workflow.start(sample_booking, lake_house, execution_id=claim.execution_id)


def contacted_names(notifier):
    return [c.args[1].name for c in notifier.notify_cleaner.call_args_list]


def fail_first_call(mocker, target, name, error):
    """Patch target.name so its first call raises error and later calls go through."""
    original = getattr(target, name)
    failures = [error]

    def flaky(*args, **kwargs):
        if failures:
            raise failures.pop()
        return original(*args, **kwargs)

    return mocker.patch.object(target, name, side_effect=flaky)


class TestStart:

    def test_contacts_rank_one_first(self, started, notifier):
        assert started.status == WorkflowStatus.AWAITING_RESPONSE
        assert started.current_cleaner().name == "Alice"
        assert started.cleaner_cursor == 0
        assert started.attempt_count == 0
        assert started.contacted_cleaners == ["Alice"]
        assert contacted_names(notifier) == ["Alice"]

    def test_token_is_sent_and_persisted(self, started, notifier, repository):
        token = notifier.notify_cleaner.call_args.args[2]

        assert token == started.active_token
        record = repository.get_token(token)
        assert record.execution_id == "exec-1"
        assert record.cleaner_name == "Alice"

    def test_schedules_noon_local_on_checkout(self, started):
        # 12:00 in New York in January is 17:00 UTC
        assert started.scheduled_cleaning_at == datetime(2026, 1, 18, 17, 0, tzinfo=timezone.utc)

    def test_property_timezone_overrides_default(self, workflow, sample_booking, lake_house):
        lake_house.metadata.timezone = "America/Chicago"

        execution = workflow.start(sample_booking, lake_house)

        assert execution.scheduled_cleaning_at == datetime(2026, 1, 18, 18, 0, tzinfo=timezone.utc)

    def test_response_deadline(self, started, fixed_now):
        assert started.response_deadline == fixed_now + timedelta(hours=12)

    def test_owner_email_fallback(self, workflow, sample_booking, lake_house):
        lake_house.metadata.owner_email = None

        assert workflow.start(sample_booking, lake_house).owner_email == "fallback@example.com"

    def test_persisted_state_matches(self, started, workflow):
        loaded = workflow.get_execution("exec-1")

        assert loaded == started
        assert loaded.version is not None

    def test_no_cleaners_exhausts_immediately(self, workflow, notifier, sample_booking, lake_house):
        lake_house.cleaners = []

        execution = workflow.start(sample_booking, lake_house)

        assert execution.status == WorkflowStatus.EXHAUSTED
        assert execution.owner_notified is True
        notifier.notify_cleaner.assert_not_called()
        notifier.notify_owner_exhausted.assert_called_once()

    def test_missing_check_out_rejected(self, workflow, sample_booking, lake_house):
        with pytest.raises(ValueError):
            workflow.start(replace(sample_booking, check_out_date=None), lake_house)


class TestResponses:

    def test_no_moves_to_next_rank(self, started, workflow, notifier):
        result = workflow.handle_response(started.active_token, "no")

        assert result.outcome == CallbackOutcome.ADVANCED
        execution = workflow.get_execution("exec-1")
        assert execution.status == WorkflowStatus.AWAITING_RESPONSE
        assert execution.current_cleaner().name == "Bob"
        assert execution.cleaner_cursor == 1
        assert execution.attempt_count == 1
        assert contacted_names(notifier) == ["Alice", "Bob"]

    def test_all_decline_exhausts_and_notifies_owner_once(self, started, workflow, notifier):
        first_token = started.active_token
        workflow.handle_response(first_token, "no")
        second_token = workflow.get_execution("exec-1").active_token

        result = workflow.handle_response(second_token, "No ")

        assert result.outcome == CallbackOutcome.EXHAUSTED
        execution = workflow.get_execution("exec-1")
        assert execution.status == WorkflowStatus.EXHAUSTED
        assert execution.contacted_cleaners == ["Alice", "Bob"]
        assert execution.owner_notified is True

        assert workflow.handle_response(second_token, "no").already_handled
        assert workflow.handle_response(first_token, "yes").already_handled
        workflow.check_timeouts(now=execution.created_at + timedelta(days=30))
        notifier.notify_owner_exhausted.assert_called_once()

    def test_yes_confirms_and_records_assignment(self, started, workflow, notifier, booking_store):
        result = workflow.handle_response(started.active_token, "yes")

        assert result.outcome == CallbackOutcome.CONFIRMED
        assert result.cleaner_name == "Alice"
        execution = workflow.get_execution("exec-1")
        assert execution.status == WorkflowStatus.CONFIRMED
        assert execution.assigned_cleaner.name == "Alice"
        assert execution.calendar_invite_sent is True
        assert execution.active_token is None
        notifier.send_calendar_invite.assert_called_once()

        record = booking_store.get_record(Platform.AIRBNB, "HM123456789")
        assert record.assignment.cleaner_name == "Alice"
        assert record.assignment.execution_id == "exec-1"

    def test_confirmed_token_replay_is_no_op(self, started, workflow, notifier):
        token = started.active_token
        workflow.handle_response(token, "yes")

        again = workflow.handle_response(token, "yes")
        declined = workflow.handle_response(token, "no")

        assert again.outcome == CallbackOutcome.ALREADY_HANDLED
        assert declined.outcome == CallbackOutcome.ALREADY_HANDLED
        assert workflow.get_execution("exec-1").status == WorkflowStatus.CONFIRMED
        assert notifier.notify_cleaner.call_count == 1
        notifier.send_calendar_invite.assert_called_once()

    def test_invite_failure_keeps_confirmation(self, started, workflow, notifier, sleep):
        notifier.send_calendar_invite.return_value = False

        result = workflow.handle_response(started.active_token, "yes")

        assert result.outcome == CallbackOutcome.CONFIRMED
        assert workflow.get_execution("exec-1").calendar_invite_sent is False
        assert notifier.send_calendar_invite.call_count == 3

    def test_invalid_response(self, started, workflow):
        with pytest.raises(InvalidResponseError):
            workflow.handle_response(started.active_token, "maybe")

        assert workflow.get_execution("exec-1").status == WorkflowStatus.AWAITING_RESPONSE

    def test_unknown_token(self, started, workflow):
        with pytest.raises(UnknownTokenError):
            workflow.handle_response("x" * 32, "yes")
        with pytest.raises(UnknownTokenError):
            workflow.handle_response("../../etc/passwd", "yes")

    def test_lost_race_reports_already_handled(self, started, workflow, repository, mocker):
        mocker.patch.object(repository, "save", side_effect=ConcurrentModificationError("k", 1))

        result = workflow.handle_response(started.active_token, "yes")

        assert result.already_handled


class TestDispatch:

    def test_unreachable_cleaner_is_skipped_after_budget(self, workflow, notifier, sample_booking, lake_house):
        notifier.notify_cleaner.side_effect = [False, False, False, True]

        execution = workflow.start(sample_booking, lake_house)

        assert contacted_names(notifier) == ["Alice", "Alice", "Alice", "Bob"]
        assert execution.current_cleaner().name == "Bob"
        assert execution.attempt_count == 1
        assert execution.contacted_cleaners == ["Alice", "Bob"]

    def test_retry_waits_between_attempts(self, repository, notifier, booking_store, workflow_config,
                                          clock, sleep, sample_booking, lake_house):
        config = replace(workflow_config, dispatch_retry_delay_seconds=5)
        workflow = CoordinationWorkflow(repository, notifier, booking_store, config, clock=clock, sleep=sleep)
        notifier.notify_cleaner.side_effect = [False, True]

        workflow.start(sample_booking, lake_house)

        sleep.assert_called_once_with(5)

    def test_every_cleaner_unreachable_exhausts(self, workflow, notifier, sample_booking, lake_house):
        notifier.notify_cleaner.return_value = False

        execution = workflow.start(sample_booking, lake_house)

        assert execution.status == WorkflowStatus.EXHAUSTED
        assert notifier.notify_cleaner.call_count == 6
        notifier.notify_owner_exhausted.assert_called_once()


class TestTimeouts:

    def test_nothing_expires_early(self, started, workflow, clock, notifier):
        clock.advance(hours=11)

        assert workflow.check_timeouts() == []
        assert contacted_names(notifier) == ["Alice"]

    def test_expired_request_moves_on(self, started, workflow, clock, notifier):
        old_token = started.active_token
        clock.advance(hours=13)

        touched = workflow.check_timeouts()

        assert [e.execution_id for e in touched] == ["exec-1"]
        assert touched[0].current_cleaner().name == "Bob"
        assert contacted_names(notifier) == ["Alice", "Bob"]
        assert workflow.handle_response(old_token, "yes").already_handled

    def test_resumes_interrupted_execution(self, workflow, repository, notifier, clock,
                                           sample_booking, lake_house, fixed_now):
        repository.create(WorkflowExecution(
            execution_id="crashed",
            booking=sample_booking,
            property=lake_house,
            owner_email="pat@example.com",
            scheduled_cleaning_at=fixed_now + timedelta(days=8),
            created_at=fixed_now,
            updated_at=fixed_now,
        ))

        assert workflow.check_timeouts() == []
        notifier.notify_cleaner.assert_not_called()

        clock.advance(minutes=10)
        touched = workflow.check_timeouts()

        assert touched[0].status == WorkflowStatus.AWAITING_RESPONSE
        assert contacted_names(notifier) == ["Alice"]


class TestSupersede:

    def test_changed_booking_supersedes_old_execution(self, started, workflow, sample_booking, lake_house):
        old_token = started.active_token
        changed = replace(sample_booking, check_out_date=started.booking.check_out_date + timedelta(days=1))

        new = workflow.start(changed, lake_house, execution_id="exec-2", supersedes="exec-1")

        old = workflow.get_execution("exec-1")
        assert old.superseded_by == "exec-2"
        assert old.is_terminal
        assert new.status == WorkflowStatus.AWAITING_RESPONSE
        assert workflow.handle_response(old_token, "yes").already_handled
        assert [e.execution_id for e in workflow.repository.list_active()] == ["exec-2"]


class TestConfirmationFollowUp:

    def test_assignment_failure_still_sends_invite(self, started, workflow, notifier, booking_store, clock, mocker):
        fail_first_call(mocker, booking_store, "record_assignment", StorageError("bookings unavailable"))
        token = started.active_token

        result = workflow.handle_response(token, "yes")

        assert result.outcome == CallbackOutcome.CONFIRMED
        notifier.send_calendar_invite.assert_called_once()
        execution = workflow.get_execution("exec-1")
        assert execution.calendar_invite_sent is True
        assert execution.assignment_recorded is False
        assert workflow.handle_response(token, "yes").already_handled

        clock.advance(minutes=10)
        touched = workflow.check_timeouts()

        assert [e.execution_id for e in touched] == ["exec-1"]
        assert workflow.get_execution("exec-1").assignment_recorded is True
        assert booking_store.get_record(Platform.AIRBNB, "HM123456789").assignment.cleaner_name == "Alice"
        assert workflow.repository.list_active() == []
        notifier.send_calendar_invite.assert_called_once()

    def test_undelivered_invite_is_retried_by_sweep(self, started, workflow, notifier, clock):
        notifier.send_calendar_invite.side_effect = [False, False, False, True]

        workflow.handle_response(started.active_token, "yes")

        assert [e.execution_id for e in workflow.repository.list_active()] == ["exec-1"]
        assert workflow.check_timeouts() == []

        clock.advance(minutes=10)
        workflow.check_timeouts()

        execution = workflow.get_execution("exec-1")
        assert execution.status == WorkflowStatus.CONFIRMED
        assert execution.calendar_invite_sent is True
        assert notifier.send_calendar_invite.call_count == 4
        assert workflow.repository.list_active() == []


class TestInterruptedStart:

    def test_storage_failure_after_create_is_left_to_sweep(self, workflow, repository, notifier, clock,
                                                           sample_booking, lake_house, mocker):
        fail_first_call(mocker, repository, "save", StorageError("blob store unavailable"))

        execution = workflow.start(sample_booking, lake_house, execution_id="exec-1")

        assert execution.execution_id == "exec-1"
        notifier.notify_cleaner.assert_not_called()
        assert workflow.get_execution("exec-1").status == WorkflowStatus.PENDING

        clock.advance(minutes=1)
        assert workflow.check_timeouts() == []

        clock.advance(minutes=10)
        touched = workflow.check_timeouts()

        assert [e.execution_id for e in touched] == ["exec-1"]
        assert contacted_names(notifier) == ["Alice"]
        assert [e.execution_id for e in repository.list_active()] == ["exec-1"]

    def test_create_failure_propagates(self, workflow, repository, notifier, sample_booking, lake_house, mocker):
        mocker.patch.object(repository, "create", side_effect=StorageError("blob store unavailable"))

        with pytest.raises(StorageError):
            workflow.start(sample_booking, lake_house, execution_id="exec-1")

        notifier.notify_cleaner.assert_not_called()
        assert repository.list_active() == []
