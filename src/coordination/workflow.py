"""
Ranked cleaner escalation.

An execution walks the property's cleaners in rank order. Each contact mints
a fresh resumption token and persists the execution before anything is sent,
so a crash between steps leaves a record the sweep can pick up. Responses and
timeouts resume the execution from the blob store; nothing waits in memory.
"""
import secrets
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .repository import TokenRecord, WorkflowRepository
from ..booking_store.store import BookingStore
from ..calendar_integration.ics import cleaning_moment
from ..cleaner_communications.notifier import CleanerNotifier
from ..utils.errors import (
    ConcurrentModificationError,
    InvalidResponseError,
    StorageError,
    UnknownTokenError,
)
from ..utils.logger import get_logger
from ..utils.models import (
    Booking,
    CallbackOutcome,
    CallbackResult,
    CleanerContact,
    CleaningAssignment,
    PropertyConfig,
    WorkflowExecution,
    WorkflowStatus,
    utc_now,
)
from config.settings import WorkflowConfig

VALID_RESPONSES = ("yes", "no")


class CoordinationWorkflow:
    """Drives one execution per booking from Pending to Confirmed or Exhausted."""

    def __init__(self, repository: WorkflowRepository, notifier: CleanerNotifier,
                 booking_store: BookingStore, config: WorkflowConfig,
                 owner_email: str = "",
                 clock: Callable[[], datetime] = utc_now,
                 sleep: Callable[[float], None] = time.sleep):
        self.repository = repository
        self.notifier = notifier
        self.booking_store = booking_store
        self.config = config
        self.owner_email = owner_email
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger("coordination_workflow")

    def start(self, booking: Booking, property_config: PropertyConfig,
              execution_id: Optional[str] = None,
              supersedes: Optional[str] = None) -> WorkflowExecution:
        """
        Create an execution for a new or changed booking and contact the first cleaner.

        Args:
            booking: The claimed booking
            property_config: Resolved property with its ranked cleaners
            execution_id: Id already recorded by the booking claim
            supersedes: Execution of the previous version of this booking

        Returns:
            The execution after the first contact (or exhaustion)
        """
        if booking.check_out_date is None:
            raise ValueError(f"Booking {booking.booking_reference} has no check-out date")

        tz_name = property_config.metadata.timezone or self.config.default_timezone
        now = self.clock()
        execution = WorkflowExecution(
            execution_id=execution_id or uuid.uuid4().hex,
            booking=booking,
            property=property_config,
            owner_email=property_config.metadata.owner_email or self.owner_email,
            scheduled_cleaning_at=cleaning_moment(booking.check_out_date,
                                                  self.config.cleaning_time, tz_name),
            created_at=now,
            updated_at=now,
        )
        # The old run stops before the new one exists; if create then fails the
        # claim is released and the next intake starts over.
        if supersedes and supersedes != execution.execution_id:
            self._supersede(supersedes, execution.execution_id)

        self.repository.create(execution)
        self.logger.info("Workflow started",
                         execution_id=execution.execution_id,
                         platform=booking.platform.value,
                         reference=booking.booking_reference,
                         property_id=property_config.property_id,
                         cleaners=len(property_config.cleaners),
                         scheduled_cleaning_at=execution.scheduled_cleaning_at.isoformat())

        try:
            return self._contact_current(execution)
        except StorageError as e:
            # The execution is persisted; the sweep resumes it after the grace period.
            self.logger.warning("Workflow start interrupted, leaving it to the sweep",
                                execution_id=execution.execution_id,
                                error=str(e),
                                error_type=type(e).__name__)
            return execution

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self.repository.load(execution_id)

    def _save(self, execution: WorkflowExecution) -> WorkflowExecution:
        return self.repository.save(execution, now=self.clock())

    def handle_response(self, token: str, response: str) -> CallbackResult:
        """
        Apply a cleaner's yes/no answer.

        Raises:
            InvalidResponseError: response is not yes or no
            UnknownTokenError: token was never issued
        """
        answer = (response or "").strip().lower()
        if answer not in VALID_RESPONSES:
            raise InvalidResponseError(response)

        record = self.repository.get_token(token)
        if record is None:
            raise UnknownTokenError(token)
        execution = self.repository.load(record.execution_id)
        if execution is None:
            raise UnknownTokenError(token)

        if execution.is_terminal or execution.active_token != token:
            self.logger.info("Response already handled",
                             execution_id=execution.execution_id,
                             status=execution.status.value,
                             cleaner_name=record.cleaner_name)
            return self._already_handled(execution, record.cleaner_name)

        try:
            if answer == "yes":
                result = self._confirm(execution)
            else:
                self.logger.info("Cleaner declined", execution_id=execution.execution_id,
                                 cleaner_name=record.cleaner_name)
                self._advance(execution)
                execution = self._contact_current(execution)
                outcome = (CallbackOutcome.EXHAUSTED if execution.status == WorkflowStatus.EXHAUSTED
                           else CallbackOutcome.ADVANCED)
                result = CallbackResult(outcome=outcome,
                                        execution_id=execution.execution_id,
                                        status=execution.status,
                                        cleaner_name=record.cleaner_name,
                                        message="Thanks for letting us know.")
        except ConcurrentModificationError:
            self.logger.info("Response lost a race, already handled",
                             execution_id=execution.execution_id)
            latest = self.repository.load(execution.execution_id) or execution
            return self._already_handled(latest, record.cleaner_name)

        self.repository.mark_token_consumed(record, answer)
        return result

    def check_timeouts(self, now: Optional[datetime] = None) -> List[WorkflowExecution]:
        """
        Advance expired executions and resume ones left mid-transition.

        Pending, Escalated and unfinished Confirmed executions are only picked
        up once they have been idle for the resume grace period, so the sweep
        does not race a start or callback that is still running.

        Returns:
            Executions whose state moved during this sweep
        """
        now = now or self.clock()
        grace = timedelta(seconds=self.config.resume_grace_seconds)
        touched = []
        for execution in self.repository.list_active():
            try:
                if execution.status == WorkflowStatus.CONFIRMED and execution.superseded_by is None:
                    if execution.updated_at <= now - grace and self._finish_confirmation(execution):
                        touched.append(execution)
                    continue
                if execution.is_terminal:
                    self.repository.archive(execution)
                    continue
                if execution.status == WorkflowStatus.AWAITING_RESPONSE:
                    if execution.response_deadline is None or execution.response_deadline > now:
                        continue
                    self.logger.info("Response window expired",
                                     execution_id=execution.execution_id,
                                     cleaner_name=execution.current_cleaner().name
                                     if execution.current_cleaner() else None,
                                     deadline=execution.response_deadline.isoformat())
                    self._advance(execution)
                else:
                    if execution.updated_at > now - grace:
                        continue
                    self.logger.info("Resuming interrupted execution",
                                     execution_id=execution.execution_id,
                                     status=execution.status.value)
                touched.append(self._contact_current(execution))
            except ConcurrentModificationError:
                self.logger.info("Execution moved on during sweep",
                                 execution_id=execution.execution_id)
            except StorageError as e:
                self.logger.error("Sweep could not advance execution",
                                  execution_id=execution.execution_id, error=str(e))
        self.logger.info("Timeout sweep complete", checked_at=now.isoformat(), touched=len(touched))
        return touched

    def _already_handled(self, execution: WorkflowExecution, cleaner_name: str) -> CallbackResult:
        return CallbackResult(outcome=CallbackOutcome.ALREADY_HANDLED,
                              execution_id=execution.execution_id,
                              status=execution.status,
                              cleaner_name=cleaner_name,
                              message="This request has already been handled.")

    def _supersede(self, old_id: str, new_id: str) -> None:
        old = self.repository.load(old_id)
        if old is None or old.is_terminal:
            return
        old.superseded_by = new_id
        old.active_token = None
        old.response_deadline = None
        try:
            self._save(old)
        except ConcurrentModificationError:
            self.logger.warning("Superseded execution changed concurrently", execution_id=old_id)
            return
        self.repository.archive(old)
        self.logger.info("Execution superseded", execution_id=old_id, superseded_by=new_id)

    def _contact_current(self, execution: WorkflowExecution) -> WorkflowExecution:
        while True:
            cleaner = execution.current_cleaner()
            if cleaner is None:
                return self._exhaust(execution)

            now = self.clock()
            token = secrets.token_urlsafe(24)
            self.repository.issue_token(TokenRecord(
                token=token,
                execution_id=execution.execution_id,
                cleaner_cursor=execution.cleaner_cursor,
                cleaner_name=cleaner.name,
                issued_at=now,
            ))
            execution.status = WorkflowStatus.AWAITING_RESPONSE
            execution.active_token = token
            execution.response_deadline = now + timedelta(hours=self.config.response_timeout_hours)
            execution.contacted_cleaners.append(cleaner.name)
            self._save(execution)

            if self._dispatch(execution, cleaner, token):
                self.logger.info("Awaiting cleaner response",
                                 execution_id=execution.execution_id,
                                 cleaner_name=cleaner.name,
                                 rank=cleaner.rank,
                                 deadline=execution.response_deadline.isoformat())
                return execution

            self.logger.warning("Cleaner unreachable, moving to next",
                                execution_id=execution.execution_id,
                                cleaner_name=cleaner.name)
            self._advance(execution)

    def _dispatch(self, execution: WorkflowExecution, cleaner: CleanerContact, token: str) -> bool:
        return self._with_retries(lambda: self.notifier.notify_cleaner(execution, cleaner, token),
                                  "cleaner_request", execution.execution_id)

    def _with_retries(self, send: Callable[[], bool], what: str, execution_id: str) -> bool:
        budget = max(1, self.config.dispatch_retry_budget)
        for attempt in range(1, budget + 1):
            if send():
                return True
            self.logger.warning("Send failed", what=what, execution_id=execution_id,
                                attempt=attempt, budget=budget)
            if attempt < budget and self.config.dispatch_retry_delay_seconds > 0:
                self.sleep(self.config.dispatch_retry_delay_seconds)
        return False

    def _advance(self, execution: WorkflowExecution) -> None:
        execution.cleaner_cursor += 1
        execution.attempt_count += 1
        execution.status = WorkflowStatus.ESCALATED
        execution.active_token = None
        execution.response_deadline = None
        self._save(execution)
        self.logger.info("Escalating to next cleaner",
                         execution_id=execution.execution_id,
                         cleaner_cursor=execution.cleaner_cursor,
                         attempt_count=execution.attempt_count)

    def _exhaust(self, execution: WorkflowExecution) -> WorkflowExecution:
        execution.status = WorkflowStatus.EXHAUSTED
        execution.active_token = None
        execution.response_deadline = None
        self._save(execution)
        self.repository.archive(execution)
        self.logger.warning("No cleaner available",
                            execution_id=execution.execution_id,
                            contacted=execution.contacted_cleaners)

        # Only the writer that moved the execution to Exhausted gets here.
        notified = self._with_retries(lambda: self.notifier.notify_owner_exhausted(execution),
                                      "owner_alert", execution.execution_id)
        if notified:
            execution.owner_notified = True
            self._save(execution)
        else:
            self.logger.error("Owner could not be notified", execution_id=execution.execution_id)
        return execution

    def _confirm(self, execution: WorkflowExecution) -> CallbackResult:
        cleaner = execution.current_cleaner()
        execution.status = WorkflowStatus.CONFIRMED
        execution.assigned_cleaner = cleaner
        execution.confirmed_at = self.clock()
        execution.active_token = None
        execution.response_deadline = None
        self._save(execution)
        self.logger.info("Cleaner confirmed", execution_id=execution.execution_id,
                         cleaner_name=cleaner.name)

        self._finish_confirmation(execution)

        return CallbackResult(outcome=CallbackOutcome.CONFIRMED,
                              execution_id=execution.execution_id,
                              status=execution.status,
                              cleaner_name=cleaner.name,
                              message=f"Thanks {cleaner.name}, the cleaning is yours.")

    def _finish_confirmation(self, execution: WorkflowExecution) -> bool:
        """
        Record the assignment on the booking and send the calendar invite.

        A confirmed execution stays active until both steps have succeeded,
        so the sweep retries whatever is left.

        Returns:
            True once both are done and the execution is archived
        """
        cleaner = execution.assigned_cleaner
        booking = execution.booking

        if not execution.assignment_recorded:
            try:
                self.booking_store.record_assignment(
                    booking.platform, booking.booking_reference,
                    CleaningAssignment(
                        cleaner_name=cleaner.name,
                        cleaner_email=cleaner.email,
                        cleaner_phone=cleaner.phone,
                        confirmed_at=execution.confirmed_at,
                        scheduled_cleaning_at=execution.scheduled_cleaning_at,
                        execution_id=execution.execution_id,
                    ),
                )
                execution.assignment_recorded = True
            except StorageError as e:
                self.logger.error("Could not record assignment",
                                  execution_id=execution.execution_id, error=str(e))

        if not execution.calendar_invite_sent:
            if self._with_retries(lambda: self.notifier.send_calendar_invite(execution, cleaner),
                                  "calendar_invite", execution.execution_id):
                execution.calendar_invite_sent = True
            else:
                self.logger.error("Calendar invite not delivered",
                                  execution_id=execution.execution_id,
                                  cleaner_name=cleaner.name)

        done = execution.assignment_recorded and execution.calendar_invite_sent
        try:
            self._save(execution)
            if done:
                self.repository.archive(execution)
        except StorageError as e:
            self.logger.warning("Could not record confirmation follow-up",
                                execution_id=execution.execution_id, error=str(e))
            return False
        return done
