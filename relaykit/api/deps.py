"""
Request dependencies: service lookup and admin authentication.
"""

import os
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

from ..core.config import load_environment
from ..core.outbox import DLQManager


def is_auth_required() -> bool:
    """Check if authentication is required."""
    load_environment()
    return os.getenv("AUTH_REQUIRED", "false").lower() == "true"


def require_admin(
    x_admin_key: Optional[str] = Header(default=None),
    x_operator_id: Optional[str] = Header(default=None),
) -> Optional[str]:
    """
    Require the admin key when AUTH_REQUIRED=true.

    Returns:
        The operator id for audit logging (X-Operator-Id, else "admin")

    Raises:
        HTTPException: 401 when the key is missing or wrong
    """
    if not is_auth_required():
        return x_operator_id or "dev-operator"

    expected = os.getenv("ADMIN_API_KEY", "")
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_operator_id or "admin"


def get_dlq(request: Request) -> DLQManager:
    return request.app.state.dlq
