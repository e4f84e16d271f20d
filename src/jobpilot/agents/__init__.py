from jobpilot.agents.searcher import SearcherService
from jobpilot.agents.scorer import ScorerService
from jobpilot.agents.generator import GeneratorService
from jobpilot.agents.dispatcher import DispatcherService
from jobpilot.agents.applications import ApplicationService
from jobpilot.agents.orchestrator import CampaignOrchestrator
from jobpilot.agents.workers import DiscoveryScheduler, StageWorkerPool

__all__ = [
    "SearcherService",
    "ScorerService",
    "GeneratorService",
    "DispatcherService",
    "ApplicationService",
    "CampaignOrchestrator",
    "DiscoveryScheduler",
    "StageWorkerPool",
]
