from jobpilot.utils.sources.registry import (
    ADAPTERS,
    DEFAULT_SOURCES,
    fetch_candidates,
)

__all__ = ["ADAPTERS", "DEFAULT_SOURCES", "fetch_candidates"]
