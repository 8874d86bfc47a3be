"""
Utility functions for the chat API.
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import HTTPException, Request, status
from pydantic import ValidationError

from chatapp.schemas import Credentials

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_json_request(request: Request) -> bool:
    """True for AJAX clients, False for browser form submissions."""
    content_type = request.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() == "application/json"


async def read_credentials(request: Request) -> Credentials:
    """
    Parse user credentials from either a JSON body or a form submission.

    JSON bodies use userId/password/email; forms use username/password/email.

    Raises:
        HTTPException: 422 if the body is malformed or a required field is missing
    """
    try:
        if is_json_request(request):
            raw_body = await request.body()
            logger.debug(f"Parsing JSON credentials ({len(raw_body)} bytes)")
            return Credentials.model_validate(json.loads(raw_body))

        form = await request.form()
        logger.debug("Parsing form credentials")
        return Credentials(
            user_id=form.get("username") or "",
            password=form.get("password") or "",
            email=form.get("email") or None,
        )
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Invalid JSON: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON: {str(e)}"
        )
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
