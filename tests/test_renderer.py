# ---------- TESTS FOR DOCUMENT RENDERING AND ARTIFACT STORAGE ----------

from io import BytesIO
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from docx import Document

from jobpilot.utils.renderer import DocxRenderer
from jobpilot.utils.s3_manager import DOCX_CONTENT_TYPE, ArtifactStore

from conftest import make_documents, make_profile


def read_text(data):
    return "\n".join(p.text for p in Document(BytesIO(data)).paragraphs)


# --- TESTS ---


def test_render_cv_to_local_artifact(renderer, artifact_store, tmp_path):
    """Test that a CV is rendered to DOCX and stored under the application id."""
    documents = make_documents(make_profile())

    ref = renderer.render(documents.cv, "app-1", "CV_Ada_Lovelace_Acme_v1.docx")

    assert ref.startswith("file://")
    assert (tmp_path / "app-1" / "CV_Ada_Lovelace_Acme_v1.docx").exists()
    text = read_text(artifact_store.load(ref))
    assert "Ada Lovelace" in text
    assert "Python, FastAPI, AWS" in text


def test_render_cover_letter(renderer, artifact_store):
    """Test that the cover letter paragraphs end up in the document."""
    documents = make_documents(make_profile())

    ref = renderer.render(documents.cover_letter, "app-1", "CoverLetter_v1.docx")

    text = read_text(artifact_store.load(ref))
    assert "Dear Hiring Team," in text
    assert text.rstrip().endswith("Ada Lovelace")


def test_render_rejects_unknown_document(renderer):
    """Test that only structured CVs and cover letters can be rendered."""
    with pytest.raises(TypeError):
        renderer.render({"summary": "free text"}, "app-1", "x.docx")


def test_s3_artifact_store_round_trip():
    """Test that artifacts go to S3 when a bucket is configured."""
    s3_client = MagicMock()
    s3_client.get_object.return_value = {"Body": BytesIO(b"docx-bytes")}
    store = ArtifactStore(bucket="jobpilot-docs", s3_client=s3_client)

    ref = store.save("app-1", "CV_v1.docx", b"docx-bytes")

    assert ref == "s3://jobpilot-docs/artifacts/app-1/CV_v1.docx"
    s3_client.put_object.assert_called_once_with(
        Bucket="jobpilot-docs",
        Key="artifacts/app-1/CV_v1.docx",
        Body=b"docx-bytes",
        ContentType=DOCX_CONTENT_TYPE,
    )
    assert store.load(ref) == b"docx-bytes"
    s3_client.get_object.assert_called_once_with(
        Bucket="jobpilot-docs", Key="artifacts/app-1/CV_v1.docx"
    )


def test_s3_failure_propagates():
    """Test that a failed upload is raised to the caller."""
    s3_client = MagicMock()
    s3_client.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
    )
    store = ArtifactStore(bucket="jobpilot-docs", s3_client=s3_client)

    with pytest.raises(ClientError):
        store.save("app-1", "CV_v1.docx", b"docx-bytes")


def test_load_rejects_unknown_reference(artifact_store):
    """Test that unsupported artifact references are rejected."""
    with pytest.raises(ValueError):
        artifact_store.load("ftp://example.com/cv.docx")
