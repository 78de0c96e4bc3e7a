import secrets
from typing import Any

from fastapi import HTTPException
from newsroom_admin.config import settings


def verify_admin_password(password: Any):
    if not settings.admin_password:
        # Fail closed when the deployment forgot to set ADMIN_PASSWORD
        raise HTTPException(status_code=500, detail="Server configuration error")
    # Non-string passwords (numbers, objects) are a mismatch, not a malformed body
    if not isinstance(password, str) or not secrets.compare_digest(password.encode(), settings.admin_password.encode()):
        raise HTTPException(status_code=401, detail="Invalid password")
