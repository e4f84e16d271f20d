# ---------- TESTS FOR CAMPAIGN ORCHESTRATOR ----------

from datetime import timedelta

import pytest
from pydantic import ValidationError

from jobpilot.config.entity_schemas import (
    Application,
    SearchCriteria,
    application_id_for,
    utcnow,
)
from jobpilot.config.statuses import (
    ActionType,
    ApplicationStatus,
    CampaignStatus,
    JobOfferStatus,
    LogStatus,
)
from jobpilot.utils.exceptions import EntityNotFoundError, IllegalTransitionError
from jobpilot.utils.work_queue import WorkItem

from conftest import USER_ID, drain, make_offer, make_posting, manual_source

# --- MOCK DATA ---

CAMPAIGN_FIELDS = {
    "name": "Python roles",
    "criteria": SearchCriteria(
        target_roles=["Python Developer"], target_locations=["Helsinki"]
    ),
    "source_ids": ["manual"],
}


@pytest.fixture
def orchestrator(pipeline):
    pipeline.store.put("sources", manual_source())
    return pipeline.orchestrator


def queued(pipeline, stage):
    items = []
    while True:
        item = pipeline.work_queue.get(stage, timeout=0.01)
        if item is None:
            return items
        pipeline.work_queue.ack(item)
        items.append(item.entity_id)


# --- TESTS ---


def test_create_starts_in_draft(orchestrator, action_log):
    """Test that new campaigns are DRAFT and logged."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)

    assert campaign.status == CampaignStatus.DRAFT
    assert campaign.match_threshold == 60
    assert orchestrator.get(campaign.id, USER_ID).name == "Python roles"


def test_create_rejects_invalid_fields(orchestrator):
    """Test that campaign validation errors surface as ValidationError."""
    with pytest.raises(ValidationError):
        orchestrator.create(USER_ID, {**CAMPAIGN_FIELDS, "match_threshold": 150})


def test_get_hides_other_users_campaigns(orchestrator):
    """Test that a campaign is not visible to another user."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)

    with pytest.raises(EntityNotFoundError):
        orchestrator.get(campaign.id, "someone-else")


def test_start_enqueues_discovery(pipeline, orchestrator):
    """Test that starting a campaign activates it and enqueues discovery."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)

    started = orchestrator.start(campaign.id, USER_ID)

    assert started.status == CampaignStatus.ACTIVE
    assert started.started_at is not None
    assert started.next_discovery_at > utcnow()
    assert queued(pipeline, "discovery") == [campaign.id]


def test_lifecycle_transitions(orchestrator):
    """Test DRAFT -> ACTIVE -> PAUSED -> ACTIVE -> COMPLETED."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)

    assert orchestrator.pause(campaign.id).status == CampaignStatus.PAUSED
    assert orchestrator.start(campaign.id).status == CampaignStatus.ACTIVE
    stopped = orchestrator.stop(campaign.id, reason="found a job")
    assert stopped.status == CampaignStatus.COMPLETED
    assert stopped.next_discovery_at is None

    with pytest.raises(IllegalTransitionError):
        orchestrator.start(campaign.id)


def test_pause_from_draft_is_illegal(orchestrator):
    """Test that a DRAFT campaign cannot be paused."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)

    with pytest.raises(IllegalTransitionError):
        orchestrator.pause(campaign.id)


def test_update_only_when_draft_or_paused(orchestrator):
    """Test that an ACTIVE campaign cannot be edited."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    updated = orchestrator.update(campaign.id, USER_ID, {"match_threshold": 75})
    assert updated.match_threshold == 75

    orchestrator.start(campaign.id)
    with pytest.raises(IllegalTransitionError):
        orchestrator.update(campaign.id, USER_ID, {"name": "Renamed"})


def test_test_mode_frozen_after_start(orchestrator):
    """Test that test_mode cannot change once the campaign has started."""
    campaign = orchestrator.create(USER_ID, {**CAMPAIGN_FIELDS, "test_mode": True})
    orchestrator.start(campaign.id)
    orchestrator.pause(campaign.id)

    with pytest.raises(IllegalTransitionError):
        orchestrator.update(campaign.id, USER_ID, {"test_mode": False})
    renamed = orchestrator.update(campaign.id, USER_ID, {"name": "Renamed"})
    assert renamed.test_mode is True


def test_delete_only_draft_or_completed(orchestrator):
    """Test that ACTIVE campaigns cannot be deleted."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)
    with pytest.raises(IllegalTransitionError):
        orchestrator.delete(campaign.id)

    orchestrator.stop(campaign.id)
    orchestrator.delete(campaign.id)
    with pytest.raises(EntityNotFoundError):
        orchestrator.get(campaign.id)


def test_trigger_discovery_requires_active(orchestrator):
    """Test that manual discovery is rejected for a DRAFT campaign."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)

    with pytest.raises(IllegalTransitionError):
        orchestrator.trigger_discovery(campaign.id)


def test_tick_enqueues_each_due_campaign_once(pipeline, orchestrator):
    """Test that two ticks for the same slot enqueue a single discovery run."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)
    queued(pipeline, "discovery")
    due = utcnow() + timedelta(hours=2)

    first = orchestrator.tick(now=due)
    second = orchestrator.tick(now=due)

    assert first == [campaign.id]
    assert second == []
    assert queued(pipeline, "discovery") == [campaign.id]


def test_tick_skips_campaigns_not_due(pipeline, orchestrator):
    """Test that a campaign is not rediscovered before its interval passes."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)
    queued(pipeline, "discovery")

    assert orchestrator.tick() == []


def test_tick_requeues_stale_discovered_offers(pipeline, orchestrator):
    """Test that DISCOVERED offers left untouched are handed back to analysis."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    campaign = orchestrator.start(campaign.id)
    offer = make_offer(pipeline.store, campaign)

    orchestrator.tick(now=utcnow() + timedelta(minutes=30))

    assert offer.id in queued(pipeline, "analysis")


def test_tick_releases_offer_left_in_analyzing(pipeline, orchestrator, action_log):
    """Test that an offer whose analysis worker died goes back to analysis."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    campaign = orchestrator.start(campaign.id)
    offer = make_offer(
        pipeline.store,
        campaign,
        status=JobOfferStatus.ANALYZING,
        updated_at=utcnow() - timedelta(days=2),
    )

    orchestrator.tick(now=utcnow() + timedelta(days=1))

    stored = pipeline.store.get("job_offers", offer.id)
    assert stored.status == JobOfferStatus.DISCOVERED
    assert offer.id in queued(pipeline, "analysis")
    entries = action_log.query(entity_id=offer.id)
    assert [e.action for e in entries] == [ActionType.JOB_ANALYSIS_FAILED.value]
    assert entries[0].status == LogStatus.FAILURE


def test_tick_keeps_fresh_claims(pipeline, orchestrator):
    """Test that a claim younger than the lease is left alone."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    campaign = orchestrator.start(campaign.id)
    offer = make_offer(
        pipeline.store,
        campaign,
        status=JobOfferStatus.ANALYZING,
        claimed_at=utcnow(),
    )

    orchestrator.tick(now=utcnow() + timedelta(minutes=5))

    assert pipeline.store.get("job_offers", offer.id).status == (
        JobOfferStatus.ANALYZING
    )
    assert offer.id not in queued(pipeline, "analysis")


@pytest.mark.parametrize(
    "claimed, failed, action",
    [
        (
            ApplicationStatus.GENERATING,
            ApplicationStatus.GENERATION_FAILED,
            ActionType.DOCUMENT_GENERATION_FAILED,
        ),
        (
            ApplicationStatus.SUBMITTING,
            ApplicationStatus.SUBMISSION_FAILED,
            ActionType.APPLICATION_SUBMISSION_FAILED,
        ),
    ],
)
def test_tick_fails_applications_with_expired_claims(
    pipeline, orchestrator, action_log, claimed, failed, action
):
    """Test that applications stuck mid-generation or mid-submission fail."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    campaign = orchestrator.start(campaign.id)
    offer = make_offer(pipeline.store, campaign, status=JobOfferStatus.MATCHED)
    application = Application(
        id=application_id_for(offer.id),
        campaign_id=campaign.id,
        user_id=campaign.user_id,
        job_offer_id=offer.id,
        source_id=offer.source_id,
        status=claimed,
        test_mode=campaign.test_mode,
        claimed_at=utcnow() - timedelta(hours=2),
    )
    pipeline.store.put("applications", application)

    orchestrator.tick(now=utcnow())

    stored = pipeline.store.get("applications", application.id)
    assert stored.status == failed
    assert stored.error_message
    entries = action_log.query(entity_id=application.id, action=action)
    assert len(entries) == 1
    assert entries[0].status == LogStatus.FAILURE
    assert queued(pipeline, "dispatch") == []


def test_discovery_without_sources_fails_campaign(pipeline, orchestrator):
    """Test that a campaign with no resolvable sources moves to FAILED."""
    campaign = orchestrator.create(
        USER_ID, {**CAMPAIGN_FIELDS, "source_ids": ["missing"]}
    )
    orchestrator.start(campaign.id)

    drain(pipeline)

    failed = orchestrator.get(campaign.id)
    assert failed.status == CampaignStatus.FAILED
    assert "No enabled job sources" in failed.failure_reason
    assert pipeline.action_log.query(action=ActionType.CAMPAIGN_FAILED)


def test_discovery_to_review(pipeline, orchestrator):
    """Test the stages from discovery through document generation."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)

    drain(pipeline)

    offers = orchestrator.list_job_offers(campaign.id, USER_ID)
    assert len(offers) == 3
    assert {o.status for o in offers} == {JobOfferStatus.MATCHED}
    applications = pipeline.store.query("applications", campaign_id=campaign.id)
    assert len(applications) == 3
    assert {a.status for a in applications} == {ApplicationStatus.PENDING_REVIEW}


def test_paused_campaign_work_is_skipped_then_resumed(pipeline, orchestrator):
    """Test that PAUSED blocks new claims and resume re-enqueues the work."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    orchestrator.start(campaign.id)
    orchestrator.handle(WorkItem("discovery", campaign.id, campaign.id))
    orchestrator.pause(campaign.id)

    drain(pipeline)
    offers = orchestrator.list_job_offers(campaign.id)
    assert {o.status for o in offers} == {JobOfferStatus.DISCOVERED}

    orchestrator.start(campaign.id)
    drain(pipeline)
    offers = orchestrator.list_job_offers(campaign.id)
    assert {o.status for o in offers} == {JobOfferStatus.MATCHED}


def test_expired_offer_is_not_analyzed(pipeline, orchestrator, reasoning_provider):
    """Test that an offer that expired while queued moves to EXPIRED."""
    campaign = orchestrator.create(USER_ID, CAMPAIGN_FIELDS)
    campaign = orchestrator.start(campaign.id)
    posting = make_posting("late", expires_at=utcnow() - timedelta(seconds=1))
    offer = make_offer(pipeline.store, campaign, posting=posting)

    result = orchestrator.handle_analysis(offer.id)

    assert result.status == JobOfferStatus.EXPIRED
    assert reasoning_provider.analysis_calls == []


def test_max_applications_stops_campaign(pipeline, orchestrator):
    """Test that reaching max_applications completes the campaign."""
    campaign = orchestrator.create(
        USER_ID, {**CAMPAIGN_FIELDS, "max_applications": 2}
    )
    orchestrator.start(campaign.id)
    orchestrator.handle(WorkItem("discovery", campaign.id, campaign.id))
    for offer_id in queued(pipeline, "analysis")[:2]:
        orchestrator.handle_analysis(offer_id)

    assert orchestrator.get(campaign.id).status == CampaignStatus.COMPLETED
    stopped = pipeline.action_log.query(action=ActionType.CAMPAIGN_STOPPED)
    assert stopped[0].metadata["reason"] == "max_applications reached"


def test_unknown_stage_is_rejected(orchestrator):
    """Test that work items for unknown stages raise ValueError."""
    with pytest.raises(ValueError):
        orchestrator.handle(WorkItem("cleanup", "x"))
