"""
Submission Clients - Direct API and Form Automation Transports.

Two of the four submission methods transmit over plain HTTP:

- AUTO_API: POST a JSON application payload to the source's submission URL
- AUTO_FORM: GET the application page, locate its form with BeautifulSoup,
  fill the fields we know and POST it back (multipart when files are attached)

Like the email transport, these functions perform the real side effect and are
only ever called by the Submission Dispatcher.
"""

import base64
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from jobpilot.config.settings import HTTP_TIMEOUT_SECONDS, USER_AGENT
from jobpilot.utils.exceptions import DeliveryError
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
    "Connection": "keep-alive",
}

# (filename, bytes, content type)
FileTuple = Tuple[str, bytes, str]

# Form input names we know how to fill, matched case-insensitively as substrings
FIELD_ALIASES: Dict[str, List[str]] = {
    "first_name": ["first_name", "firstname", "fname", "given"],
    "last_name": ["last_name", "lastname", "lname", "surname", "family"],
    "full_name": ["full_name", "fullname", "name"],
    "email": ["email", "e-mail", "mail"],
    "phone": ["phone", "tel", "mobile"],
    "linkedin": ["linkedin"],
    "cover_letter": ["cover_letter", "coverletter", "motivation", "message"],
}

# File inputs: "resume" gets the CV, "cover" gets the cover letter
FILE_ALIASES: Dict[str, List[str]] = {
    "cv": ["resume", "cv", "curriculum"],
    "cover_letter_file": ["cover"],
}


def _session(session: Optional[requests.Session]) -> requests.Session:
    if session is None:
        session = requests.Session()
    session.headers.update(HEADERS)
    return session


def submit_via_api(
    submission_url: str,
    payload: Dict[str, Any],
    files: Optional[List[FileTuple]] = None,
    session: Optional[requests.Session] = None,
    timeout: float = HTTP_TIMEOUT_SECONDS,
) -> str:
    """POST an application to a hiring API.

    Attachments are embedded in the JSON body as base64.

    Args:
        submission_url: Endpoint accepting applications.
        payload: Candidate and job fields.
        files: Documents to attach.
        session: Optional requests session.
        timeout: Request timeout in seconds.

    Returns:
        str: Submission reference returned by the API (or the HTTP status).

    Raises:
        DeliveryError: On network failure or a non-2xx response.
    """
    body = dict(payload)
    body["attachments"] = [
        {
            "filename": filename,
            "content_type": content_type,
            "content": base64.b64encode(data).decode("ascii"),
        }
        for filename, data, content_type in files or []
    ]

    try:
        response = _session(session).post(submission_url, json=body, timeout=timeout)
    except requests.RequestException as e:
        logger.error(
            "API submission request failed",
            extra={
                "extra_fields": {
                    "url": submission_url,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            },
        )
        raise DeliveryError(f"API submission failed: {e}") from e

    if not 200 <= response.status_code < 300:
        logger.warning(
            "API submission rejected",
            extra={
                "extra_fields": {
                    "url": submission_url,
                    "status_code": response.status_code,
                    "response_preview": response.text[:500] if response.text else None,
                }
            },
        )
        raise DeliveryError(f"API submission returned {response.status_code}")

    reference = f"http-{response.status_code}"
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        reference = str(data.get("id") or data.get("reference") or reference)

    logger.info(
        "API submission accepted",
        extra={"extra_fields": {"url": submission_url, "reference": reference}},
    )
    return reference


def fill_form(
    html: str, page_url: str, fields: Dict[str, str]
) -> Tuple[str, Dict[str, str], Dict[str, str]]:
    """Locate the application form and map known values onto its inputs.

    Args:
        html: Application page HTML.
        page_url: URL the page was fetched from (for resolving the action).
        fields: Values keyed by FIELD_ALIASES names.

    Returns:
        Tuple of (action URL, form data, file input names keyed by FILE_ALIASES name).

    Raises:
        DeliveryError: If the page has no form.
    """
    soup = BeautifulSoup(html, "html.parser")
    forms = soup.find_all("form")
    if not forms:
        raise DeliveryError(f"No form found on {page_url}")

    # Prefer the form that accepts a file upload, otherwise the largest one
    form = max(
        forms,
        key=lambda f: (
            bool(f.find("input", attrs={"type": "file"})),
            len(f.find_all(["input", "textarea", "select"])),
        ),
    )
    action = urljoin(page_url, form.get("action") or page_url)

    data: Dict[str, str] = {}
    file_inputs: Dict[str, str] = {}
    for element in form.find_all(["input", "textarea", "select"]):
        name = element.get("name")
        if not name:
            continue
        input_type = (element.get("type") or "").lower()
        lowered = name.lower()

        if input_type == "file":
            for key, aliases in FILE_ALIASES.items():
                if key not in file_inputs and any(a in lowered for a in aliases):
                    file_inputs[key] = name
                    break
            continue
        if input_type in ("submit", "button", "image", "reset"):
            continue
        if input_type == "hidden":
            data[name] = element.get("value", "")
            continue

        for key, aliases in FIELD_ALIASES.items():
            if key in fields and any(alias in lowered for alias in aliases):
                data[name] = fields[key]
                break

    return action, data, file_inputs


def submit_via_form(
    page_url: str,
    fields: Dict[str, str],
    files: Optional[Dict[str, FileTuple]] = None,
    session: Optional[requests.Session] = None,
    timeout: float = HTTP_TIMEOUT_SECONDS,
) -> str:
    """Fill and submit an application form.

    Args:
        page_url: Page hosting the application form.
        fields: Candidate values keyed by FIELD_ALIASES names.
        files: Attachments keyed by FILE_ALIASES names ("cv", "cover_letter_file").
        session: Optional requests session (keeps cookies between GET and POST).
        timeout: Request timeout in seconds.

    Returns:
        str: A submission reference (final URL after redirects).

    Raises:
        DeliveryError: On network failure, a missing form or a rejected POST.
    """
    session = _session(session)
    try:
        page = session.get(page_url, timeout=timeout)
    except requests.RequestException as e:
        raise DeliveryError(f"Could not load application form: {e}") from e
    if page.status_code != 200:
        raise DeliveryError(f"Application form returned {page.status_code}")

    action, data, file_inputs = fill_form(page.text, page_url, fields)
    upload = {
        file_inputs[key]: value
        for key, value in (files or {}).items()
        if key in file_inputs
    }

    logger.info(
        "Submitting application form",
        extra={
            "extra_fields": {
                "action": action,
                "filled_fields": sorted(data),
                "file_fields": sorted(upload),
            }
        },
    )

    try:
        response = session.post(
            action, data=data, files=upload or None, timeout=timeout
        )
    except requests.RequestException as e:
        raise DeliveryError(f"Form submission failed: {e}") from e

    if response.status_code >= 400:
        raise DeliveryError(f"Form submission returned {response.status_code}")
    return response.url or action
