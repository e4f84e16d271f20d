"""
Shared helpers for source adapters.

Every adapter turns raw items from its upstream into NormalizedPosting objects.
The helpers here cover the parts all of them share:

- Criteria filtering (role, location, remote, salary)
- Text cleanup (HTML stripping, requirement extraction)
- Validation of raw items with skip-and-log for malformed ones
- Deduplication by external id within one fetch
- Keys used for cross-source duplicate detection (normalized URL, fuzzy key)
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from pydantic import ValidationError

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
)
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

MAX_REQUIREMENTS = 15

# Common abbreviations and variations of role names
ROLE_VARIATIONS: Dict[str, List[str]] = {
    "frontend": ["front-end", "front end", "ui", "react", "vue", "angular"],
    "backend": ["back-end", "back end", "server", "api", "node", "python", "java"],
    "fullstack": ["full-stack", "full stack"],
    "devops": ["dev ops", "sre", "infrastructure", "platform"],
    "data": ["data science", "machine learning", "ml", "ai", "analytics"],
}

REMOTE_KEYWORDS = ["remote", "anywhere", "worldwide", "work from home", "wfh"]

TECH_KEYWORDS = [
    "JavaScript",
    "TypeScript",
    "Python",
    "Java",
    "Go",
    "Rust",
    "React",
    "Vue",
    "Angular",
    "Node.js",
    "PostgreSQL",
    "MongoDB",
    "Redis",
    "AWS",
    "GCP",
    "Azure",
    "Docker",
    "Kubernetes",
    "CI/CD",
    "Git",
    "REST",
    "GraphQL",
    "SQL",
    "NoSQL",
]

_REQUIREMENT_SECTION = re.compile(
    r"(?:requirements?|qualifications?|what we're looking for|skills):?\s*\n"
    r"((?:[-•*]\s*.+\n?)+)",
    re.IGNORECASE,
)
_BULLET = re.compile(r"^[-•*]\s*")

# ---------- CRITERIA MATCHING ----------


def _fuzzy_role_match(title: str, role: str) -> bool:
    for key, variations in ROLE_VARIATIONS.items():
        if key in role:
            return any(v in title for v in variations)
        if any(v in role for v in variations):
            return key in title or any(v in title for v in variations)
    return False


def matches_role(title: str, target_roles: List[str]) -> bool:
    """True if `title` matches any target role (no roles means everything matches)."""
    if not target_roles:
        return True
    normalized_title = title.lower()
    for role in target_roles:
        normalized_role = role.lower()
        if (
            normalized_role in normalized_title
            or normalized_title in normalized_role
            or _fuzzy_role_match(normalized_title, normalized_role)
        ):
            return True
    return False


def is_remote(location: Optional[str]) -> bool:
    if not location:
        return False
    lowered = location.lower()
    return any(keyword in lowered for keyword in REMOTE_KEYWORDS)


def matches_location(
    location: Optional[str], target_locations: List[str], remote_ok: bool
) -> bool:
    """Check a posting location against the campaign's target locations.

    Remote postings always match when `remote_ok` is set. An unknown location
    only matches if remote work is acceptable.
    """
    if remote_ok and is_remote(location):
        return True
    if not target_locations:
        return True
    if not location:
        return remote_ok
    lowered = location.lower()
    return any(
        target.lower() in lowered or lowered in target.lower()
        for target in target_locations
    )


def determine_remote_type(location: Optional[str], description: str) -> str:
    """Classify a posting as Remote, Hybrid, On-site or Unknown."""
    combined = f"{location or ''} {description}".lower()
    if "fully remote" in combined or "100% remote" in combined:
        return "Remote"
    if "hybrid" in combined:
        return "Hybrid"
    if any(word in combined for word in ("remote", "anywhere", "worldwide")):
        return "Remote"
    if any(word in combined for word in ("on-site", "onsite", "office")):
        return "On-site"
    return "Unknown"


def matches_criteria(posting: NormalizedPosting, criteria: SearchCriteria) -> bool:
    """Apply role, location and contract type filters to a normalized posting."""
    if not matches_role(posting.title, criteria.target_roles):
        return False
    if not matches_location(
        posting.location, criteria.target_locations, criteria.remote_ok
    ):
        return False
    if not criteria.remote_ok and posting.remote_type == "Remote":
        return False
    if criteria.contract_types and posting.contract_type:
        wanted = [c.lower() for c in criteria.contract_types]
        if posting.contract_type.lower() not in wanted:
            return False
    return True


# ---------- TEXT ----------


def strip_html(html: Optional[str]) -> str:
    """Convert an HTML fragment to plain text, one block per line."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text("\n")
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def extract_requirements(description: str) -> List[str]:
    """Pull requirement bullets out of a description.

    Falls back to known technology keywords when the description has no
    requirements section. Returns at most MAX_REQUIREMENTS items.
    """
    requirements: List[str] = []
    for match in _REQUIREMENT_SECTION.finditer(description):
        for line in match.group(1).splitlines():
            cleaned = _BULLET.sub("", line).strip()
            if len(cleaned) > 3 and cleaned not in requirements:
                requirements.append(cleaned)

    if not requirements:
        lowered = description.lower()
        requirements = [kw for kw in TECH_KEYWORDS if kw.lower() in lowered]

    return requirements[:MAX_REQUIREMENTS]


# ---------- VALIDATION AND DEDUPLICATION ----------


def parse_posting(raw: Dict[str, Any], source_id: str) -> Optional[NormalizedPosting]:
    """Validate one raw item, logging and returning None if it is malformed."""
    try:
        return NormalizedPosting.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Skipping malformed posting",
            extra={
                "extra_fields": {
                    "source_id": source_id,
                    "external_id": raw.get("external_id"),
                    "error_count": e.error_count(),
                    "errors": e.errors(include_url=False)[:3],
                }
            },
        )
        return None


# Errors a mapping function raises on upstream items with unexpected shapes
ITEM_ERRORS = (AttributeError, KeyError, OverflowError, TypeError, ValueError)


def parse_items(
    items: Iterable[Any],
    to_raw: Callable[[Any, SourceConfig], Dict[str, Any]],
    source: SourceConfig,
) -> Iterator[NormalizedPosting]:
    """Map and validate upstream items one at a time, skipping bad ones.

    An item whose mapping raises, or whose mapped fields fail validation, is
    logged and skipped; the remaining items are still yielded.
    """
    for index, item in enumerate(items):
        try:
            raw = to_raw(item, source)
        except ITEM_ERRORS as e:
            logger.warning(
                "Skipping unreadable upstream item",
                extra={
                    "extra_fields": {
                        "source_id": source.id,
                        "index": index,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            continue
        posting = parse_posting(raw, source.id)
        if posting is not None:
            yield posting


def as_number(value: Any) -> Optional[float]:
    """Coerce an upstream numeric field, returning None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def dedupe_by_external_id(
    postings: Iterable[NormalizedPosting],
) -> Iterator[NormalizedPosting]:
    seen = set()
    for posting in postings:
        if posting.external_id in seen:
            continue
        seen.add(posting.external_id)
        yield posting


def is_newer_than(posting: NormalizedPosting, since: Optional[datetime]) -> bool:
    """True if the posting may be new relative to the `since` cursor.

    Postings without a publication date are always kept; persistence
    deduplicates them.
    """
    if since is None or posting.posted_at is None:
        return True
    posted_at = posting.posted_at
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=timezone.utc)
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return posted_at > since


TRACKING_PARAMS = {"ref", "source", "src", "fbclid", "gclid", "mc_cid", "mc_eid"}


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Lower-case the host and drop tracking parameters, fragment and trailing slash.

    The rest of the query is kept (sorted): many boards identify a posting
    only by a query parameter such as ?jk= or ?gh_jid=.
    """
    if not url:
        return None
    parts = urlsplit(url.strip())
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.rstrip("/")
    params = sorted(
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(name)
    )
    return urlunsplit(("https", host, path, urlencode(params), ""))


def fuzzy_key(posting: NormalizedPosting) -> str:
    """company|title|location with punctuation and case removed."""

    def clean(value: Optional[str]) -> str:
        return re.sub(r"[^a-z0-9]+", " ", (value or "").lower()).strip()

    return "|".join(
        [clean(posting.company), clean(posting.title), clean(posting.location)]
    )
