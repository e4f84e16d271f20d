"""
Structured Output Schemas for the Reasoning Provider.

Every response from the reasoning provider is validated against one of these
models before the pipeline accepts it. A response that fails validation is
treated as a failure of the call, never partially stored.

Key Models:
    - JobAnalysis: Output of the match analysis call
    - GeneratedCV: Tailored CV content
    - GeneratedCoverLetter: Tailored cover letter content
    - GeneratedDocuments: The pair returned by a generation call
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Recommendation = Literal[
    "strong_match", "good_match", "possible_match", "weak_match", "no_match"
]


class MatchBreakdown(BaseModel):
    skills_match: int = Field(ge=0, le=100)
    experience_match: int = Field(ge=0, le=100)
    education_match: int = Field(ge=0, le=100)
    location_match: int = Field(ge=0, le=100)
    salary_match: Optional[int] = Field(default=None, ge=0, le=100)


class JobAnalysis(BaseModel):
    """Structured match analysis for one profile/posting pair."""

    match_score: int = Field(ge=0, le=100)
    match_breakdown: MatchBreakdown
    matching_requirements: List[str] = Field(default_factory=list)
    missing_requirements: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    recommendation: Recommendation
    reasoning: str = Field(min_length=1)


class CVPersonalInfo(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: Optional[str] = None
    location: Optional[str] = None
    linkedin: Optional[str] = None


class CVWorkExperience(BaseModel):
    company: str
    title: str
    location: Optional[str] = None
    start_date: str
    end_date: Optional[str] = None
    highlights: List[str] = Field(default_factory=list)


class CVEducation(BaseModel):
    institution: str
    degree: str
    field: Optional[str] = None
    end_date: Optional[str] = None


class CVLanguage(BaseModel):
    name: str
    proficiency: str


class GeneratedCV(BaseModel):
    """Tailored CV content."""

    personal_info: CVPersonalInfo
    summary: str = Field(min_length=1)
    work_experience: List[CVWorkExperience] = Field(default_factory=list)
    education: List[CVEducation] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    languages: List[CVLanguage] = Field(default_factory=list)


class GeneratedCoverLetter(BaseModel):
    """Tailored cover letter content."""

    recipient_name: Optional[str] = None
    recipient_title: Optional[str] = None
    company_name: str = Field(min_length=1)
    opening: str = Field(min_length=1)
    body: List[str] = Field(min_length=1, max_length=4)
    closing: str = Field(min_length=1)
    signature: str = Field(min_length=1)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: List[str]) -> List[str]:
        """Reject empty paragraphs."""
        if any(not paragraph.strip() for paragraph in v):
            raise ValueError("cover letter body paragraphs must not be empty")
        return v

    def as_text(self) -> str:
        """Plain-text rendering used as an email body."""
        parts = [self.opening, *self.body, self.closing, self.signature]
        return "\n\n".join(part.strip() for part in parts)


class GeneratedDocuments(BaseModel):
    cv: GeneratedCV
    cover_letter: GeneratedCoverLetter
