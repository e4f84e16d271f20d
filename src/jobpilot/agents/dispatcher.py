"""
Dispatcher Service - Application Submission.

This module contains the DispatcherService class, the only component in the
package that performs a real submission side effect (email, hiring API, web
form). Every transmission goes through `_send_live`, which refuses to run for a
test-mode application.

Method selection, in priority order:
    1. AUTO_API   the source accepts applications over its API
    2. AUTO_FORM  the source supports form automation and it is enabled
    3. EMAIL      the posting has a contact email
    4. ASSISTED   none of the above; the user submits and marks it submitted

Test mode:
    A test-mode application goes through every step (documents are loaded,
    the EmailRecord is created and moved through its states, the Action Log is
    written) except the transmission itself. Records carry dry_run=True and a
    "dry-run-<timestamp>" reference.

Failures:
    A failed transmission moves the Application to SUBMISSION_FAILED. It is
    never retried automatically; the user retries explicitly.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from jobpilot.config.analysis_schemas import GeneratedCoverLetter
from jobpilot.config.entity_schemas import (
    Application,
    EmailRecord,
    JobOffer,
    Profile,
    SourceConfig,
    utcnow,
)
from jobpilot.config.settings import (
    FORM_AUTOMATION_ENABLED,
    MAX_APPLICATIONS_PER_DAY,
    MAX_APPLICATIONS_PER_WEEK,
)
from jobpilot.config.statuses import (
    ActionType,
    ApplicationMethod,
    ApplicationStatus,
    DocumentType,
    EmailStatus,
    JobOfferStatus,
    LogStatus,
)
from jobpilot.agents.generator import latest_documents
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.email_service import Attachment
from jobpilot.utils.exceptions import (
    ClaimConflictError,
    DeliveryError,
    EntityNotFoundError,
    IllegalTransitionError,
    InfrastructureError,
    SubmissionLimitError,
    TestModeViolationError,
)
from jobpilot.utils.logger import get_logger
from jobpilot.utils.state_manager import claim, transition
from jobpilot.utils.submission_clients import submit_via_api, submit_via_form

logger = get_logger(__name__)

T = TypeVar("T")


def select_method(
    source: Optional[SourceConfig],
    offer: JobOffer,
    form_automation_enabled: bool,
) -> ApplicationMethod:
    """Pick the submission method for an offer (deterministic priority order)."""
    if source is not None and source.supports_api_submission and source.submission_url:
        return ApplicationMethod.AUTO_API
    if (
        source is not None
        and source.supports_form_automation
        and form_automation_enabled
        and offer.posting.application_url
    ):
        return ApplicationMethod.AUTO_FORM
    if offer.posting.application_email:
        return ApplicationMethod.EMAIL
    return ApplicationMethod.ASSISTED


def mark_offer_applied(store: Any, job_offer_id: str) -> None:
    """Move a MATCHED offer to APPLIED once its application is submitted."""
    current = store.get("job_offers", job_offer_id)
    if current is None or current.status == JobOfferStatus.APPLIED:
        return
    try:
        transition(store, "job_offers", current, JobOfferStatus.APPLIED)
    except (ClaimConflictError, IllegalTransitionError) as e:
        logger.warning(
            "Could not mark job offer applied",
            extra={
                "extra_fields": {
                    "job_offer_id": job_offer_id,
                    "status": current.status.value,
                    "error": str(e),
                }
            },
        )


class DispatcherService:
    """Submits READY_TO_SUBMIT applications.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        email_transport: Object with `send(to, subject, body, attachments)`.
        artifact_store: Object with `load(artifact_ref) -> bytes`.
        profile_provider: Object with `get_profile(user_id)`.
        api_submit: Transport for AUTO_API.
        form_submit: Transport for AUTO_FORM.
        form_automation_enabled: Operator switch for AUTO_FORM.
        max_per_day: Cap on real submissions per user in 24 hours.
        max_per_week: Cap on real submissions per user in 7 days.
    """

    def __init__(
        self,
        store: Any,
        action_log: ActionLog,
        email_transport: Any,
        artifact_store: Any,
        profile_provider: Any,
        api_submit: Callable[..., str] = submit_via_api,
        form_submit: Callable[..., str] = submit_via_form,
        form_automation_enabled: bool = FORM_AUTOMATION_ENABLED,
        max_per_day: int = MAX_APPLICATIONS_PER_DAY,
        max_per_week: int = MAX_APPLICATIONS_PER_WEEK,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.email_transport = email_transport
        self.artifact_store = artifact_store
        self.profile_provider = profile_provider
        self.api_submit = api_submit
        self.form_submit = form_submit
        self.form_automation_enabled = form_automation_enabled
        self.max_per_day = max_per_day
        self.max_per_week = max_per_week

    # ------------------------------
    # Public interface
    # ------------------------------
    def dispatch(self, application_id: str) -> Application:
        """Submit (or simulate submitting) one application.

        Returns:
            Application: SUBMITTED, SUBMISSION_FAILED, or still READY_TO_SUBMIT
            for ASSISTED submissions and deferred (capped) ones.

        Raises:
            ClaimConflictError: If the application is not READY_TO_SUBMIT.
            EntityNotFoundError: If the application or its offer is missing.
            TestModeViolationError: If a real transmission was attempted for a
                test-mode application (after recording the failure).
        """
        application = self.store.get("applications", application_id)
        if application is None:
            raise EntityNotFoundError("applications", application_id)
        if application.status != ApplicationStatus.READY_TO_SUBMIT:
            raise ClaimConflictError(
                f"applications/{application_id}: expected READY_TO_SUBMIT, "
                f"found {application.status.value}"
            )

        offer = self.store.get("job_offers", application.job_offer_id)
        if offer is None:
            raise EntityNotFoundError("job_offers", application.job_offer_id)
        source = self.store.get("sources", application.source_id)
        method = select_method(source, offer, self.form_automation_enabled)

        if method == ApplicationMethod.ASSISTED:
            return self._mark_assisted(application, offer)

        if not application.test_mode:
            try:
                self._check_limits(application)
            except SubmissionLimitError as e:
                self._record(
                    application,
                    ActionType.APPLICATION_SUBMISSION_DEFERRED,
                    LogStatus.FAILURE,
                    metadata={"method": method.value},
                    error_message=str(e),
                )
                logger.warning(
                    "Submission deferred by rate cap",
                    extra={
                        "extra_fields": {
                            "application_id": application.id,
                            "error": str(e),
                        }
                    },
                )
                return application

        application = claim(
            self.store,
            "applications",
            application.id,
            ApplicationStatus.READY_TO_SUBMIT,
            ApplicationStatus.SUBMITTING,
            method=method,
            claimed_at=utcnow(),
        )

        try:
            reference = self._submit(application, offer, source, method)
        except InfrastructureError:
            raise
        except TestModeViolationError as e:
            self._fail(application, e)
            raise
        except Exception as e:
            return self._fail(application, e)

        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.SUBMITTED,
            submitted_at=utcnow(),
            submission_reference=reference,
            error_message=None,
        )
        mark_offer_applied(self.store, offer.id)
        self._record(
            application,
            ActionType.APPLICATION_SUBMITTED,
            metadata={
                "method": method.value,
                "reference": reference,
                "dry_run": application.test_mode,
            },
        )
        return application

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _send_live(self, application: Application, send: Callable[[], T]) -> T:
        """The single point where a real transmission happens."""
        if application.test_mode:
            logger.critical(
                "Refused real transmission for a test-mode application",
                extra={"extra_fields": {"application_id": application.id}},
            )
            raise TestModeViolationError(
                f"Application {application.id} is in test mode; "
                "real transmission refused"
            )
        return send()

    def _submit(
        self,
        application: Application,
        offer: JobOffer,
        source: Optional[SourceConfig],
        method: ApplicationMethod,
    ) -> str:
        profile = self.profile_provider.get_profile(application.user_id)
        if profile is None:
            raise ValueError(f"No profile for user {application.user_id}")
        attachments, cover_letter = self._load_documents(application)

        if method == ApplicationMethod.EMAIL:
            return self._submit_email(
                application, offer, profile, attachments, cover_letter
            )

        if application.test_mode:
            return self._dry_run_reference()

        if method == ApplicationMethod.AUTO_API:
            payload = self._api_payload(application, offer, profile, cover_letter)
            files = [(a.filename, a.data, a.content_type) for a in attachments]
            return self._send_live(
                application,
                lambda: self.api_submit(source.submission_url, payload, files),
            )

        fields = self._form_fields(profile, cover_letter)
        files = {
            key: (a.filename, a.data, a.content_type)
            for key, a in zip(("cv", "cover_letter_file"), attachments)
        }
        return self._send_live(
            application,
            lambda: self.form_submit(offer.posting.application_url, fields, files),
        )

    def _submit_email(
        self,
        application: Application,
        offer: JobOffer,
        profile: Profile,
        attachments: List[Attachment],
        cover_letter: str,
    ) -> str:
        record = EmailRecord(
            application_id=application.id,
            user_id=application.user_id,
            recipient=offer.posting.application_email,
            subject=f"Application for {offer.posting.title} - {profile.full_name}",
            body=cover_letter,
            attachments=[a.filename for a in attachments],
            dry_run=application.test_mode,
        )
        self.store.put("emails", record)
        self._record_email(record, ActionType.EMAIL_QUEUED)
        record = transition(self.store, "emails", record, EmailStatus.SENDING)

        try:
            if application.test_mode:
                message_id = self._dry_run_reference()
            else:
                result = self._send_live(
                    application,
                    lambda: self.email_transport.send(
                        record.recipient, record.subject, record.body, attachments
                    ),
                )
                message_id = result.message_id
        except (DeliveryError, TestModeViolationError) as e:
            record = transition(
                self.store,
                "emails",
                record,
                EmailStatus.FAILED,
                error_message=str(e),
                retry_count=record.retry_count + 1,
            )
            self._record_email(
                record, ActionType.EMAIL_FAILED, LogStatus.FAILURE, str(e)
            )
            raise

        record = transition(
            self.store,
            "emails",
            record,
            EmailStatus.SENT,
            message_id=message_id,
            sent_at=utcnow(),
        )
        self._record_email(record, ActionType.EMAIL_SENT)
        return message_id

    def _load_documents(
        self, application: Application
    ) -> Tuple[List[Attachment], str]:
        """Latest CV and cover letter as attachments, plus the letter text."""
        documents = self.store.query("documents", application_id=application.id)
        latest = latest_documents(documents)
        missing = [t.value for t in DocumentType if t not in latest]
        if missing:
            raise ValueError(f"Missing generated documents: {', '.join(missing)}")

        attachments = [
            Attachment(
                filename=latest[t].filename,
                data=self.artifact_store.load(latest[t].artifact_ref),
            )
            for t in (DocumentType.CV, DocumentType.COVER_LETTER)
        ]
        letter = GeneratedCoverLetter.model_validate(
            latest[DocumentType.COVER_LETTER].content
        )
        return attachments, letter.as_text()

    def _api_payload(
        self,
        application: Application,
        offer: JobOffer,
        profile: Profile,
        cover_letter: str,
    ) -> Dict[str, Any]:
        return {
            "external_job_id": offer.external_id,
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
            "phone": profile.phone,
            "linkedin": profile.linkedin,
            "cover_letter": cover_letter,
            "client_reference": application.id,
        }

    def _form_fields(self, profile: Profile, cover_letter: str) -> Dict[str, str]:
        fields = {
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "full_name": profile.full_name,
            "email": profile.email,
            "phone": profile.phone,
            "linkedin": profile.linkedin,
            "cover_letter": cover_letter,
        }
        return {key: value for key, value in fields.items() if value}

    def _check_limits(self, application: Application) -> None:
        """Raise SubmissionLimitError if the user reached a real-submission cap."""
        now = utcnow()
        submitted = [
            app.submitted_at
            for app in self.store.query(
                "applications",
                user_id=application.user_id,
                status=ApplicationStatus.SUBMITTED,
                test_mode=False,
            )
            if app.submitted_at is not None
        ]
        last_day = sum(1 for ts in submitted if ts >= now - timedelta(days=1))
        last_week = sum(1 for ts in submitted if ts >= now - timedelta(days=7))
        if last_day >= self.max_per_day:
            raise SubmissionLimitError(
                f"Daily submission limit reached ({self.max_per_day})"
            )
        if last_week >= self.max_per_week:
            raise SubmissionLimitError(
                f"Weekly submission limit reached ({self.max_per_week})"
            )

    def _mark_assisted(self, application: Application, offer: JobOffer) -> Application:
        if application.method != ApplicationMethod.ASSISTED:
            application = self.store.compare_and_set(
                "applications",
                application.id,
                {"status": ApplicationStatus.READY_TO_SUBMIT},
                {"method": ApplicationMethod.ASSISTED, "updated_at": utcnow()},
            )
        self._record(
            application,
            ActionType.APPLICATION_ASSISTED,
            metadata={
                "application_url": offer.posting.application_url,
                "posting_url": offer.posting.url,
            },
        )
        return application

    def _fail(self, application: Application, error: Exception) -> Application:
        logger.error(
            "Submission failed",
            extra={
                "extra_fields": {
                    "application_id": application.id,
                    "method": application.method.value if application.method else None,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            },
            exc_info=True,
        )
        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.SUBMISSION_FAILED,
            error_message=f"{type(error).__name__}: {error}",
            retry_count=application.retry_count + 1,
        )
        self._record(
            application,
            ActionType.APPLICATION_SUBMISSION_FAILED,
            LogStatus.FAILURE,
            metadata={"method": application.method.value},
            error_message=str(error),
        )
        return application

    def _dry_run_reference(self) -> str:
        return f"dry-run-{utcnow().strftime('%Y%m%d%H%M%S%f')}"

    def _record(
        self,
        application: Application,
        action: ActionType,
        status: LogStatus = LogStatus.SUCCESS,
        metadata: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.action_log.record(
            "application",
            application.id,
            action,
            status=status,
            test_mode=application.test_mode,
            user_id=application.user_id,
            metadata=metadata,
            error_message=error_message,
        )

    def _record_email(
        self,
        record: EmailRecord,
        action: ActionType,
        status: LogStatus = LogStatus.SUCCESS,
        error_message: Optional[str] = None,
    ) -> None:
        self.action_log.record(
            "email",
            record.id,
            action,
            status=status,
            test_mode=record.dry_run,
            user_id=record.user_id,
            metadata={
                "application_id": record.application_id,
                "dry_run": record.dry_run,
                "message_id": record.message_id,
            },
            error_message=error_message,
        )
