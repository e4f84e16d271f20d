"""
Document Rendering Service.

Turns validated structured documents (GeneratedCV, GeneratedCoverLetter) into
Word documents with python-docx and stores them through the ArtifactStore.

`render(document, application_id, filename) -> artifact_ref` is the rendering
service interface the Document Generator depends on.
"""

from datetime import datetime
from io import BytesIO
from typing import Optional, Union

from docx import Document
from docx.shared import Pt

from jobpilot.config.analysis_schemas import GeneratedCoverLetter, GeneratedCV
from jobpilot.utils.logger import get_logger
from jobpilot.utils.s3_manager import ArtifactStore

logger = get_logger(__name__)

StructuredDocument = Union[GeneratedCV, GeneratedCoverLetter]


def _date_range(start: Optional[str], end: Optional[str]) -> str:
    if not start:
        return end or ""
    return f"{start} - {end or 'Present'}"


def build_cv_docx(cv: GeneratedCV) -> Document:
    """Lay out a tailored CV as a python-docx Document."""
    doc = Document()
    info = cv.personal_info
    doc.add_heading(f"{info.first_name} {info.last_name}", level=0)

    contact = [info.email, info.phone, info.location, info.linkedin]
    doc.add_paragraph(" | ".join(part for part in contact if part))

    doc.add_heading("Summary", level=1)
    doc.add_paragraph(cv.summary)

    if cv.work_experience:
        doc.add_heading("Experience", level=1)
        for job in cv.work_experience:
            heading = doc.add_paragraph()
            heading.add_run(f"{job.title}, {job.company}").bold = True
            details = [_date_range(job.start_date, job.end_date), job.location or ""]
            doc.add_paragraph(" | ".join(part for part in details if part))
            for highlight in job.highlights:
                doc.add_paragraph(highlight, style="List Bullet")

    if cv.education:
        doc.add_heading("Education", level=1)
        for edu in cv.education:
            line = edu.degree + (f" in {edu.field}" if edu.field else "")
            line += f", {edu.institution}"
            if edu.end_date:
                line += f" ({edu.end_date})"
            doc.add_paragraph(line)

    if cv.skills:
        doc.add_heading("Skills", level=1)
        doc.add_paragraph(", ".join(cv.skills))

    if cv.languages:
        doc.add_heading("Languages", level=1)
        for language in cv.languages:
            doc.add_paragraph(f"{language.name}: {language.proficiency}")

    return doc


def build_cover_letter_docx(letter: GeneratedCoverLetter) -> Document:
    """Lay out a cover letter as a python-docx Document."""
    doc = Document()
    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style.font.size = Pt(11)

    doc.add_paragraph(datetime.now().strftime("%d %B %Y"))

    recipient = [letter.recipient_name, letter.recipient_title, letter.company_name]
    doc.add_paragraph("\n".join(part for part in recipient if part))

    doc.add_paragraph(letter.opening)
    for paragraph in letter.body:
        doc.add_paragraph(paragraph)
    doc.add_paragraph(letter.closing)
    doc.add_paragraph(letter.signature)
    return doc


def to_bytes(doc: Document) -> bytes:
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


class DocxRenderer:
    """Rendering service producing DOCX artifacts.

    Args:
        artifact_store: Where rendered files are persisted.
    """

    def __init__(self, artifact_store: Optional[ArtifactStore] = None) -> None:
        self.artifact_store = artifact_store or ArtifactStore()

    def render(
        self, document: StructuredDocument, application_id: str, filename: str
    ) -> str:
        """Render `document` and return the stored artifact reference."""
        if isinstance(document, GeneratedCV):
            doc = build_cv_docx(document)
        elif isinstance(document, GeneratedCoverLetter):
            doc = build_cover_letter_docx(document)
        else:
            raise TypeError(f"Cannot render {type(document).__name__}")

        data = to_bytes(doc)
        logger.debug(
            "Rendered document",
            extra={"extra_fields": {"doc_filename": filename, "bytes": len(data)}},
        )
        return self.artifact_store.save(application_id, filename, data)
