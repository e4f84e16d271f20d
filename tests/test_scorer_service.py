# ---------- TESTS FOR SCORER SERVICE ----------

import pytest

from jobpilot.agents.scorer import ScorerService
from jobpilot.config.entity_schemas import application_id_for
from jobpilot.config.statuses import (
    ActionType,
    ApplicationStatus,
    JobOfferStatus,
    LogStatus,
)
from jobpilot.utils.exceptions import ClaimConflictError
from jobpilot.utils.profile_provider import StoreProfileProvider

from conftest import (
    FakeEmbeddingProvider,
    FakeReasoningProvider,
    make_campaign,
    make_offer,
    make_profile,
    make_posting,
)


def build_scorer(store, action_log, embedding=None, reasoning=None, floor=0.25):
    return ScorerService(
        store,
        action_log,
        embedding_provider=embedding or FakeEmbeddingProvider(),
        reasoning_provider=reasoning or FakeReasoningProvider(),
        profile_provider=StoreProfileProvider(store),
        prefilter_floor=floor,
    )


# --- TESTS ---


def test_score_above_threshold_matches_and_creates_application(
    store, action_log, profile
):
    """Test that a score of 72 against a threshold of 60 produces an application."""
    campaign = make_campaign(store, match_threshold=60)
    offer = make_offer(store, campaign)
    scorer = build_scorer(store, action_log)

    analyzed, application = scorer.analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.MATCHED
    assert analyzed.match_score == 72
    assert analyzed.match_analysis.missing_requirements == ["Kubernetes"]
    assert application.id == application_id_for(offer.id)
    assert application.status == ApplicationStatus.PENDING_GENERATION
    assert application.requires_confirm is True
    assert store.get("applications", application.id) is not None
    logged = action_log.query(entity_id=offer.id, action=ActionType.JOB_ANALYZED)
    assert logged[0].metadata["outcome"] == "MATCHED"


def test_score_below_threshold_rejects(store, action_log, profile):
    """Test that a score under the threshold rejects the offer."""
    campaign = make_campaign(store, match_threshold=80)
    offer = make_offer(store, campaign)
    scorer = build_scorer(store, action_log)

    analyzed, application = scorer.analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.REJECTED
    assert analyzed.match_score == 72
    assert application is None
    assert store.query("applications") == []


def test_threshold_is_inclusive(store, action_log, profile):
    """Test that a score equal to the threshold matches."""
    campaign = make_campaign(store, match_threshold=72)
    offer = make_offer(store, campaign)

    analyzed, _ = build_scorer(store, action_log).analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.MATCHED


def test_prefilter_rejects_without_reasoning(store, action_log, profile):
    """Test that a dissimilar posting never reaches the reasoning provider."""
    campaign = make_campaign(store)
    offer = make_offer(store, campaign)
    reasoning = FakeReasoningProvider()
    scorer = build_scorer(
        store,
        action_log,
        embedding=FakeEmbeddingProvider(vector=[0.0, 1.0, 0.0]),
        reasoning=reasoning,
    )

    analyzed, application = scorer.analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.REJECTED
    assert analyzed.match_score is None
    assert analyzed.prefilter_similarity == pytest.approx(0.0)
    assert application is None
    assert reasoning.analysis_calls == []


def test_auto_apply_outside_test_mode_skips_confirmation(store, action_log, profile):
    """Test that auto apply creates applications that need no confirmation."""
    campaign = make_campaign(store, auto_apply=True)
    offer = make_offer(store, campaign)

    _, application = build_scorer(store, action_log).analyze(offer.id, campaign)

    assert application.requires_confirm is False


def test_test_mode_always_requires_confirmation(store, action_log, profile):
    """Test that test-mode campaigns keep the confirmation step."""
    campaign = make_campaign(store, auto_apply=True, test_mode=True)
    offer = make_offer(store, campaign)

    _, application = build_scorer(store, action_log).analyze(offer.id, campaign)

    assert application.requires_confirm is True
    assert application.test_mode is True


def test_reasoning_failure_moves_offer_to_error(store, action_log, profile):
    """Test that an invalid analysis leaves the offer in ERROR with a log entry."""
    campaign = make_campaign(store)
    offer = make_offer(store, campaign)
    scorer = build_scorer(
        store, action_log, reasoning=FakeReasoningProvider(fail_analysis=True)
    )

    analyzed, application = scorer.analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.ERROR
    assert "schema validation" in analyzed.error_message
    assert application is None
    failure = action_log.query(action=ActionType.JOB_ANALYSIS_FAILED)[0]
    assert failure.status == LogStatus.FAILURE


def test_missing_embedding_defers_analysis(store, action_log):
    """Test that an offer is released back to DISCOVERED until the profile is ready."""
    store.put("profiles", make_profile(embedding=None))
    campaign = make_campaign(store)
    offer = make_offer(store, campaign)
    reasoning = FakeReasoningProvider()

    analyzed, application = build_scorer(
        store, action_log, reasoning=reasoning
    ).analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.DISCOVERED
    assert application is None
    assert reasoning.analysis_calls == []
    deferred = action_log.query(action=ActionType.JOB_ANALYSIS_DEFERRED)
    assert deferred[0].status == LogStatus.PENDING


def test_missing_profile_is_an_error(store, action_log):
    """Test that analysis without any profile fails the offer."""
    campaign = make_campaign(store)
    offer = make_offer(store, campaign)

    analyzed, _ = build_scorer(store, action_log).analyze(offer.id, campaign)

    assert analyzed.status == JobOfferStatus.ERROR


def test_offer_not_discovered_is_not_claimed(store, action_log, profile):
    """Test that a second analysis of the same offer loses the claim."""
    campaign = make_campaign(store)
    offer = make_offer(store, campaign)
    scorer = build_scorer(store, action_log)
    scorer.analyze(offer.id, campaign)

    with pytest.raises(ClaimConflictError):
        scorer.analyze(offer.id, campaign)


def test_scores_follow_posting(store, action_log, profile):
    """Test that each offer is scored independently."""
    campaign = make_campaign(store, match_threshold=60)
    strong = make_offer(store, campaign, posting=make_posting("strong"))
    weak = make_offer(
        store,
        campaign,
        posting=make_posting("weak", title="Junior Python Developer"),
    )
    reasoning = FakeReasoningProvider(scores={"Junior Python Developer": 40})
    scorer = build_scorer(store, action_log, reasoning=reasoning)

    assert scorer.analyze(strong.id, campaign)[0].status == JobOfferStatus.MATCHED
    assert scorer.analyze(weak.id, campaign)[0].status == JobOfferStatus.REJECTED
