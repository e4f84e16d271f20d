# ---------- SHARED FIXTURES AND FAKE PROVIDERS ----------

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from jobpilot.config.analysis_schemas import (
    CVPersonalInfo,
    GeneratedCV,
    GeneratedCoverLetter,
    GeneratedDocuments,
    JobAnalysis,
    MatchBreakdown,
)
from jobpilot.config.entity_schemas import (
    Campaign,
    JobOffer,
    NormalizedPosting,
    Profile,
    SearchCriteria,
    SourceConfig,
    job_offer_id_for,
    utcnow,
)
from jobpilot.config.statuses import SourceType
from jobpilot.main import build_pipeline
from jobpilot.utils.action_log import ActionLog
from jobpilot.utils.email_service import DeliveryResult
from jobpilot.utils.memory_store import InMemoryStore
from jobpilot.utils.renderer import DocxRenderer
from jobpilot.utils.s3_manager import ArtifactStore
from jobpilot.utils.work_queue import InMemoryWorkQueue

USER_ID = "user-1"
PROFILE_VECTOR = [1.0, 0.0, 0.0]


# --- FAKE PROVIDERS ---


class FakeEmbeddingProvider:
    """Returns `vector` for every text unless a text-specific one is set."""

    def __init__(self, vector=None, by_keyword=None):
        self.vector = vector or PROFILE_VECTOR
        self.by_keyword = by_keyword or {}
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        for keyword, vector in self.by_keyword.items():
            if keyword in text:
                return vector
        return self.vector


class FakeReasoningProvider:
    """Deterministic reasoning provider.

    `scores` maps a posting title to its match score (default_score otherwise).
    """

    def __init__(self, default_score=72, scores=None, fail_analysis=False):
        self.default_score = default_score
        self.scores = scores or {}
        self.fail_analysis = fail_analysis
        self.generation_error = None
        self.analysis_calls = []
        self.generation_calls = []

    def analyze_match(self, profile, posting):
        self.analysis_calls.append(posting.title)
        if self.fail_analysis:
            raise ValueError("LLM response failed schema validation")
        return make_analysis(self.scores.get(posting.title, self.default_score))

    def generate_documents(self, profile, baseline_cv, posting):
        self.generation_calls.append(posting.title)
        if self.generation_error is not None:
            raise self.generation_error
        return make_documents(profile, posting.company)


# --- FACTORIES ---


def make_analysis(score=72):
    return JobAnalysis(
        match_score=score,
        match_breakdown=MatchBreakdown(
            skills_match=score,
            experience_match=score,
            education_match=80,
            location_match=100,
            salary_match=None,
        ),
        matching_requirements=["Python"],
        missing_requirements=["Kubernetes"],
        red_flags=[],
        recommendation="good_match" if score >= 60 else "weak_match",
        reasoning="Strong Python background, limited Kubernetes exposure.",
    )


def make_documents(profile, company="Acme"):
    return GeneratedDocuments(
        cv=GeneratedCV(
            personal_info=CVPersonalInfo(
                first_name=profile.first_name,
                last_name=profile.last_name,
                email=profile.email,
            ),
            summary="Backend engineer focused on Python services.",
            skills=["Python", "FastAPI", "AWS"],
        ),
        cover_letter=GeneratedCoverLetter(
            company_name=company,
            opening="Dear Hiring Team,",
            body=["I would like to apply for the Python Developer role."],
            closing="Kind regards,",
            signature=profile.full_name,
        ),
    )


def make_profile(user_id=USER_ID, embedding=PROFILE_VECTOR):
    return Profile(
        user_id=user_id,
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="+358 40 123 4567",
        skills=["Python", "FastAPI", "AWS"],
        baseline_cv="Ada Lovelace - Backend Engineer",
        embedding=embedding,
    )


def make_posting(external_id="job-1", **overrides):
    fields = {
        "external_id": external_id,
        "title": "Python Developer",
        "company": "Acme",
        "location": "Helsinki",
        "description": "Build Python services with FastAPI on AWS.",
        "requirements": ["Python", "FastAPI"],
        "url": f"https://jobs.example.com/{external_id}",
        "posted_at": utcnow() - timedelta(hours=1),
        "application_email": "jobs@acme.example.com",
    }
    fields.update(overrides)
    return NormalizedPosting(**fields)


def make_campaign(store, **overrides):
    fields = {
        "user_id": USER_ID,
        "name": "Python roles",
        "criteria": SearchCriteria(
            target_roles=["Python Developer"], target_locations=["Helsinki"]
        ),
        "source_ids": ["manual"],
    }
    fields.update(overrides)
    campaign = Campaign(**fields)
    store.put("campaigns", campaign)
    return campaign


def make_offer(store, campaign, posting=None, source_id="manual", **overrides):
    posting = posting or make_posting()
    offer = JobOffer(
        id=job_offer_id_for(campaign.id, source_id, posting.external_id),
        campaign_id=campaign.id,
        user_id=campaign.user_id,
        source_id=source_id,
        external_id=posting.external_id,
        posting=posting,
        **overrides,
    )
    store.put("job_offers", offer)
    return offer


def manual_source(postings=None, source_id="manual", **overrides):
    raw = postings
    if raw is None:
        raw = [
            make_posting(f"job-{i}", company=f"Company {i}").model_dump(mode="json")
            for i in range(3)
        ]
    return SourceConfig(
        id=source_id,
        name="Manual",
        type=SourceType.MANUAL,
        postings=raw,
        **overrides,
    )


# --- FIXTURES ---


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def action_log(store):
    return ActionLog(store)


@pytest.fixture
def work_queue():
    return InMemoryWorkQueue()


@pytest.fixture
def profile(store):
    profile = make_profile()
    store.put("profiles", profile)
    return profile


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(bucket=None, base_path=tmp_path)


@pytest.fixture
def renderer(artifact_store):
    return DocxRenderer(artifact_store)


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def reasoning_provider():
    return FakeReasoningProvider()


@pytest.fixture
def email_transport():
    transport = MagicMock()
    transport.send.return_value = DeliveryResult(message_id="ses-message-1")
    return transport


@pytest.fixture
def pipeline(
    store,
    work_queue,
    profile,
    artifact_store,
    embedding_provider,
    reasoning_provider,
    email_transport,
):
    """A fully wired in-memory pipeline with fake providers and no workers started."""
    return build_pipeline(
        store=store,
        work_queue=work_queue,
        embedding_provider=embedding_provider,
        reasoning_provider=reasoning_provider,
        artifact_store=artifact_store,
        email_transport=email_transport,
        api_submit=MagicMock(return_value="api-ref-1"),
        form_submit=MagicMock(return_value="https://jobs.example.com/thanks"),
        worker_counts={"discovery": 1, "analysis": 1, "generation": 1, "dispatch": 1},
        mock_enabled=False,
    )


def drain(pipeline, max_items=200):
    """Process every queued item synchronously, stage by stage, until empty."""
    processed = 0
    while processed < max_items:
        progressed = False
        for stage in ("discovery", "analysis", "generation", "dispatch"):
            item = pipeline.work_queue.get(stage, timeout=0.01)
            if item is None:
                continue
            pipeline.workers.process(item)
            processed += 1
            progressed = True
        if not progressed:
            return processed
    return processed
