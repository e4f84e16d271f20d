"""
jobpilot Path Configuration.

Defines the file system locations used when artifacts are kept locally
(no S3 bucket configured).

Path Configuration:
    - Lambda: Uses /tmp/jobpilot for writable storage (Lambda's only writable location)
    - Local: Uses JOBPILOT_DATA_DIR if set, otherwise ./data

Directory Structure:
    - artifacts/{application_id}/: Rendered CV and cover letter documents (DOCX files)
"""

# ---------- PATHS ----------

import os
from pathlib import Path

# Check if running in Lambda (Lambda sets LAMBDA_TASK_ROOT)
IS_LAMBDA = os.environ.get("LAMBDA_TASK_ROOT") is not None

if IS_LAMBDA:
    BASE_PATH = Path("/tmp/jobpilot")
else:
    BASE_PATH = Path(os.environ.get("JOBPILOT_DATA_DIR", "data"))

# Rendered documents are stored as artifacts/{application_id}/{filename}
ARTIFACT_PATH = BASE_PATH / "artifacts"
