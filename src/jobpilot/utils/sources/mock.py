"""
Mock source adapter for development and demos.

Generates realistic postings from the campaign's target roles and locations.
Generation is seeded from the source id, the criteria and the current UTC day,
so repeated fetches on the same day return the same postings (and the same
external ids) while a new batch appears each day.
"""

import hashlib
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

from jobpilot.config.entity_schemas import (
    NormalizedPosting,
    SearchCriteria,
    SourceConfig,
    utcnow,
)
from jobpilot.utils.rate_limiter import SourceRateLimiter
from jobpilot.utils.sources.base import (
    dedupe_by_external_id,
    is_newer_than,
    parse_posting,
)

COMPANIES = [
    "TechGlobal Solutions",
    "StartupIO",
    "FinanceHub",
    "CloudNative Inc",
    "DataDriven Corp",
    "AgileWorks",
    "Innovation Labs",
    "ScaleFast",
    "SecureNet Systems",
    "DevOps Masters",
]

SKILL_SETS: Dict[str, List[str]] = {
    "frontend": [
        "React",
        "Vue",
        "Angular",
        "TypeScript",
        "JavaScript",
        "CSS",
        "HTML",
        "Redux",
        "Next.js",
    ],
    "backend": [
        "Node.js",
        "Python",
        "Java",
        "Go",
        "Rust",
        "PostgreSQL",
        "MongoDB",
        "Redis",
        "GraphQL",
    ],
    "fullstack": [
        "React",
        "Node.js",
        "TypeScript",
        "PostgreSQL",
        "Docker",
        "AWS",
        "CI/CD",
    ],
    "devops": [
        "Kubernetes",
        "Docker",
        "AWS",
        "GCP",
        "Azure",
        "Terraform",
        "Ansible",
        "Jenkins",
        "GitLab CI",
    ],
    "data": [
        "Python",
        "SQL",
        "Spark",
        "Hadoop",
        "Machine Learning",
        "TensorFlow",
        "Pandas",
        "Airflow",
    ],
}

SALARY_RANGES = {
    "junior": (35000, 50000),
    "mid": (50000, 75000),
    "senior": (75000, 110000),
    "lead": (100000, 140000),
}

LEVEL_DESCRIPTIONS = {
    "junior": "an entry-level position perfect for developers starting their career",
    "mid": "a mid-level position for experienced developers looking to grow",
    "senior": "a senior position requiring deep expertise and leadership skills",
    "lead": "a leadership role overseeing technical direction and team development",
}

RESPONSIBILITIES = [
    "Design and implement new features",
    "Collaborate with cross-functional teams",
    "Write clean, maintainable code",
    "Participate in code reviews",
    "Contribute to technical documentation",
    "Debug and resolve production issues",
    "Mentor junior team members",
    "Drive technical decisions",
]


def _skill_category(role: str) -> str:
    lowered = role.lower()
    if any(word in lowered for word in ("frontend", "react", "vue")):
        return "frontend"
    if any(word in lowered for word in ("backend", "node", "python")):
        return "backend"
    if any(word in lowered for word in ("devops", "sre", "cloud")):
        return "devops"
    if any(word in lowered for word in ("data", "ml", "machine learning")):
        return "data"
    return "fullstack"


def _level(role: str) -> str:
    lowered = role.lower()
    if "senior" in lowered or "sr" in lowered.split():
        return "senior"
    if "junior" in lowered or "jr" in lowered.split():
        return "junior"
    if "lead" in lowered or "principal" in lowered:
        return "lead"
    return "mid"


def _description(
    role: str, company: str, requirements: List[str], level: str, rng: random.Random
) -> str:
    count = 6 if level in ("lead", "senior") else 4
    duties = rng.sample(RESPONSIBILITIES, count)
    nice_to_have = requirements[4:] or ["Experience with agile methodologies"]
    lines = [
        f"{company} is looking for a {role} to join our team. "
        f"This is {LEVEL_DESCRIPTIONS[level]}.",
        "",
        "Responsibilities:",
        *[f"- {duty}" for duty in duties],
        "",
        "Requirements:",
        *[f"- {req}" for req in requirements[:4]],
        "- Strong problem-solving skills",
        "- Excellent communication skills",
        "",
        "Nice to have:",
        *[f"- {item}" for item in nice_to_have],
        "",
        "[DEMO MODE] This is a simulated job posting for testing purposes.",
    ]
    return "\n".join(lines)


def generate_postings(
    source: SourceConfig, criteria: SearchCriteria, now: datetime
) -> List[dict]:
    """Raw postings for one source, criteria and day."""
    day = now.astimezone(timezone.utc).date()
    seed_text = "|".join(
        [
            source.id,
            ",".join(criteria.target_roles),
            ",".join(criteria.target_locations),
            day.isoformat(),
        ]
    )
    seed = hashlib.sha256(seed_text.encode()).hexdigest()
    rng = random.Random(seed)

    roles = criteria.target_roles or ["Software Engineer"]
    locations = criteria.target_locations or ["Remote"]
    contract_types = criteria.contract_types or ["Full-time", "Contract"]
    remote_types = (
        ["Remote", "Hybrid", "On-site"] if criteria.remote_ok else ["On-site", "Hybrid"]
    )
    day_start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    postings = []
    for i in range(rng.randint(5, 15)):
        role = rng.choice(roles)
        company = rng.choice(COMPANIES)
        level = _level(role)
        skills = SKILL_SETS[_skill_category(role)]
        requirements = rng.sample(skills, min(len(skills), rng.randint(4, 7)))
        low, high = SALARY_RANGES[level]
        remote_type = rng.choice(remote_types)
        external_id = f"mock-{seed[:12]}-{i}"
        domain = company.lower().replace(" ", "")
        postings.append(
            {
                "external_id": external_id,
                "title": role,
                "company": company,
                "location": (
                    "Remote" if remote_type == "Remote" else rng.choice(locations)
                ),
                "description": _description(role, company, requirements, level, rng),
                "requirements": requirements,
                "salary": f"{low:,} - {high:,} EUR",
                "contract_type": rng.choice(contract_types),
                "remote_type": remote_type,
                "url": f"https://jobs.example.com/mock/{external_id}",
                "posted_at": day_start + timedelta(minutes=i),
                "application_email": f"careers@{domain}.example.com",
            }
        )
    return postings


def fetch_mock(
    source: SourceConfig,
    criteria: SearchCriteria,
    since: Optional[datetime],
    rate_limiter: Optional[SourceRateLimiter] = None,
    now: Optional[datetime] = None,
) -> Iterator[NormalizedPosting]:
    if rate_limiter is not None:
        rate_limiter.wait_for_slot(source.rate_limit_key or "mock")
    raw_postings = generate_postings(source, criteria, now or utcnow())
    postings = (parse_posting(raw, source.id) for raw in raw_postings)
    return dedupe_by_external_id(
        p for p in postings if p is not None and is_newer_than(p, since)
    )
