"""
Generator Service - Tailored CV and Cover Letter Generation.

This module contains the GeneratorService class, which turns a MATCHED job
offer into a tailored CV and cover letter for its Application.

The service:
1. Claims the Application (PENDING_GENERATION -> GENERATING)
2. Asks the reasoning provider for both documents as schema-validated JSON
3. Reserves a new version number per document type from an atomic sequence
4. Renders both documents to DOCX artifacts
5. Persists both GeneratedDocument records, only after both rendered
6. Moves the Application to PENDING_REVIEW (or READY_TO_SUBMIT when it does
   not require confirmation)

Versions are never reused: regenerating creates version N+1 and leaves
version N untouched. Failures leave the Application in GENERATION_FAILED;
there is no automatic retry.
"""

import re
from typing import Any, List, Optional

from jobpilot.config.analysis_schemas import GeneratedDocuments
from jobpilot.config.entity_schemas import (
    Application,
    GeneratedDocument,
    JobOffer,
    Profile,
    utcnow,
)
from jobpilot.config.statuses import (
    ActionType,
    ApplicationStatus,
    DocumentType,
    LogStatus,
)
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.exceptions import EntityNotFoundError, InfrastructureError
from jobpilot.utils.logger import get_logger, log_performance
from jobpilot.utils.rate_limiter import ProviderLimiter
from jobpilot.utils.state_manager import claim, transition

logger = get_logger(__name__)

FILENAME_PREFIX = {DocumentType.CV: "CV", DocumentType.COVER_LETTER: "CoverLetter"}


def _filename_part(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9]+", "_", value).strip("_")
    return cleaned or "Unknown"


def document_filename(
    doc_type: DocumentType, profile: Profile, company: str, version: int
) -> str:
    """{CV|CoverLetter}_{First_Last}_{Company}_v{N}.docx"""
    name = _filename_part(f"{profile.first_name} {profile.last_name}")
    prefix = FILENAME_PREFIX[doc_type]
    return f"{prefix}_{name}_{_filename_part(company)}_v{version}.docx"


def latest_documents(documents: List[GeneratedDocument]) -> dict:
    """Map each document type to its highest version."""
    latest = {}
    for document in documents:
        current = latest.get(document.type)
        if current is None or document.version > current.version:
            latest[document.type] = document
    return latest


class GeneratorService:
    """Generates and renders application documents.

    Args:
        store: Store implementation.
        action_log: Action Log sink.
        reasoning_provider: Object with
            `generate_documents(profile, baseline_cv, posting)`.
        profile_provider: Object with `get_profile` / `get_baseline_cv`.
        renderer: Rendering service with `render(document, application_id, filename)`.
        limiter: Bounded concurrency per provider.
    """

    def __init__(
        self,
        store: Any,
        action_log: ActionLog,
        reasoning_provider: Any,
        profile_provider: Any,
        renderer: Any,
        limiter: Optional[ProviderLimiter] = None,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.reasoning_provider = reasoning_provider
        self.profile_provider = profile_provider
        self.renderer = renderer
        self.limiter = limiter or ProviderLimiter()

    # ------------------------------
    # Public interface
    # ------------------------------
    def generate(self, application_id: str) -> Application:
        """Generate, render and store a new version of both documents.

        Returns:
            Application: In PENDING_REVIEW, READY_TO_SUBMIT or GENERATION_FAILED.

        Raises:
            ClaimConflictError: If the application is not PENDING_GENERATION.
            EntityNotFoundError: If the application does not exist.
        """
        application = claim(
            self.store,
            "applications",
            application_id,
            ApplicationStatus.PENDING_GENERATION,
            ApplicationStatus.GENERATING,
            claimed_at=utcnow(),
        )
        self._record(
            application, ActionType.DOCUMENT_GENERATION_STARTED, LogStatus.PENDING
        )

        try:
            with log_performance("document_generation", application_id=application.id):
                documents = self._generate_and_render(application)
        except InfrastructureError:
            raise
        except Exception as e:
            return self._fail(application, e)

        application = transition(
            self.store,
            "applications",
            application,
            ApplicationStatus.PENDING_REVIEW,
            error_message=None,
        )
        self._record(
            application,
            ActionType.DOCUMENT_GENERATED,
            metadata={
                "documents": [
                    {"type": d.type.value, "version": d.version, "id": d.id}
                    for d in documents
                ]
            },
        )

        if not application.requires_confirm:
            application = transition(
                self.store,
                "applications",
                application,
                ApplicationStatus.READY_TO_SUBMIT,
                confirmed_at=utcnow(),
            )
            self._record(application, ActionType.APPLICATION_AUTO_CONFIRMED)

        return application

    # ------------------------------
    # Internal functions
    # ------------------------------
    def _generate_and_render(self, application: Application) -> List[GeneratedDocument]:
        offer: Optional[JobOffer] = self.store.get(
            "job_offers", application.job_offer_id
        )
        if offer is None:
            raise EntityNotFoundError("job_offers", application.job_offer_id)
        profile = self.profile_provider.get_profile(application.user_id)
        if profile is None:
            raise ValueError(f"No profile for user {application.user_id}")
        baseline_cv = self.profile_provider.get_baseline_cv(application.user_id)

        with self.limiter.slot("reasoning"):
            generated: GeneratedDocuments = self.reasoning_provider.generate_documents(
                profile, baseline_cv, offer.posting
            )

        contents = [
            (DocumentType.CV, generated.cv),
            (DocumentType.COVER_LETTER, generated.cover_letter),
        ]
        # Render everything before persisting anything
        documents = []
        for doc_type, content in contents:
            version = self.store.next_sequence(
                f"doc:{application.id}:{doc_type.value}"
            )
            filename = document_filename(
                doc_type, profile, offer.posting.company, version
            )
            artifact_ref = self.renderer.render(content, application.id, filename)
            documents.append(
                GeneratedDocument(
                    application_id=application.id,
                    user_id=application.user_id,
                    type=doc_type,
                    version=version,
                    content=content.model_dump(mode="json"),
                    artifact_ref=artifact_ref,
                    filename=filename,
                    test_mode=application.test_mode,
                )
            )

        for document in documents:
            self.store.put("documents", document)
        return documents

    def _fail(self, application: Application, error: Exception) -> Application:
        logger.error(
            "Document generation failed",
            extra={
                "extra_fields": {
                    "application_id": application.id,
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
            ApplicationStatus.GENERATION_FAILED,
            error_message=f"{type(error).__name__}: {error}",
        )
        self._record(
            application,
            ActionType.DOCUMENT_GENERATION_FAILED,
            LogStatus.FAILURE,
            error_message=str(error),
        )
        return application

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
