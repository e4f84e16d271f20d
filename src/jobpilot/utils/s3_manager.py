"""
S3 Manager for Document Artifacts.

Stores rendered documents durably and hands back an artifact reference:

- "s3://{bucket}/{key}" when S3_DOCUMENTS_BUCKET is configured
- "file://{absolute path}" otherwise (local development)

Keys are laid out as artifacts/{application_id}/{filename}. Artifacts are never
overwritten: every document version has its own filename.

Environment Variables:
    S3_DOCUMENTS_BUCKET: Name of the S3 bucket for document storage (optional)
"""

from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

from botocore.exceptions import BotoCoreError, ClientError

from jobpilot.config.paths import ARTIFACT_PATH
from jobpilot.config.settings import S3_DOCUMENTS_BUCKET
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

DOCX_CONTENT_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)

_s3_client: Optional[Any] = None


def get_s3_client() -> Any:
    """Get or create the S3 client using lazy initialization."""
    global _s3_client
    if _s3_client is None:
        import boto3

        _s3_client = boto3.client("s3")
    return _s3_client


class ArtifactStore:
    """Durable storage for rendered artifacts.

    Args:
        bucket: S3 bucket name. None stores artifacts on the local filesystem.
        base_path: Local directory used when no bucket is configured.
        s3_client: Optional boto3 S3 client.
    """

    def __init__(
        self,
        bucket: Optional[str] = S3_DOCUMENTS_BUCKET,
        base_path: Path = ARTIFACT_PATH,
        s3_client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.base_path = Path(base_path)
        self._s3_client = s3_client

    def save(
        self,
        application_id: str,
        filename: str,
        data: bytes,
        content_type: str = DOCX_CONTENT_TYPE,
    ) -> str:
        """Store `data` and return its artifact reference.

        Raises:
            OSError / botocore errors: If the artifact cannot be written.
        """
        key = f"artifacts/{application_id}/{filename}"

        if self.bucket:
            client = self._s3_client or get_s3_client()
            try:
                client.put_object(
                    Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(
                    "Failed to store artifact in S3",
                    extra={
                        "extra_fields": {
                            "application_id": application_id,
                            "s3_key": key,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    },
                    exc_info=True,
                )
                raise
            artifact_ref = f"s3://{self.bucket}/{key}"
        else:
            path = self.base_path / application_id / filename
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            artifact_ref = path.resolve().as_uri()

        logger.info(
            "Stored artifact",
            extra={
                "extra_fields": {
                    "application_id": application_id,
                    "artifact_ref": artifact_ref,
                    "bytes": len(data),
                }
            },
        )
        return artifact_ref

    def load(self, artifact_ref: str) -> bytes:
        """Read the bytes behind an artifact reference."""
        if artifact_ref.startswith("s3://"):
            bucket, _, key = artifact_ref[len("s3://") :].partition("/")
            client = self._s3_client or get_s3_client()
            response = client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        if artifact_ref.startswith("file://"):
            return Path(url2pathname(urlparse(artifact_ref).path)).read_bytes()
        raise ValueError(f"Unsupported artifact reference: {artifact_ref}")
