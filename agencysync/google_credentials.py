"""Service-account credentials for the Sheets client.

Two sources are accepted: a key file downloaded from the Google Cloud console,
or the ``GOOGLE_CLIENT_EMAIL``/``GOOGLE_PRIVATE_KEY`` pair set on hosted
deployments. Both end up as the ``info`` mapping that
``service_account.Credentials.from_service_account_info`` expects.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

ENV_CLIENT_EMAIL = "GOOGLE_CLIENT_EMAIL"
ENV_PRIVATE_KEY = "GOOGLE_PRIVATE_KEY"
REQUIRED_FIELDS: Tuple[str, ...] = ("client_email", "private_key", "token_uri")

_TOKEN_URI = "https://oauth2.googleapis.com/token"
_PEM_MARKER = "BEGIN PRIVATE KEY"


class CredentialsFileInvalidError(ValueError):
    """Raised when service-account data cannot be used to sign in."""


def _unescape_key(key: str) -> str:
    # Keys pasted into env vars or JSON editors arrive with literal "\n".
    key = key.replace("\\n", "\n").replace("\r\n", "\n").replace("\r", "\n")
    return key if key.endswith("\n") else key + "\n"


def _checked(info: Mapping[str, Any], source: str) -> Dict[str, Any]:
    missing = [name for name in REQUIRED_FIELDS if not str(info.get(name) or "").strip()]
    if missing:
        raise CredentialsFileInvalidError(f"{source} is missing {', '.join(missing)}")
    if info.get("type", "service_account") != "service_account":
        raise CredentialsFileInvalidError(f"{source} is not a service account key")
    private_key = str(info["private_key"])
    if _PEM_MARKER not in private_key:
        raise CredentialsFileInvalidError(f"{source}: private_key is not a PEM encoded key")

    checked = dict(info)
    checked["client_email"] = str(info["client_email"]).strip()
    checked["private_key"] = _unescape_key(private_key)
    return checked


def load_service_account_file(path: Path) -> Dict[str, Any]:
    """Read and check a service-account key file; the file is not modified."""

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Unable to read {path}: {exc}") from exc
    if not text.strip():
        raise CredentialsFileInvalidError(f"{path} is empty")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"{path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CredentialsFileInvalidError(f"{path} must contain a JSON object")
    return _checked(payload, str(path))


def service_account_info_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Dict[str, Any]]:
    """Build service-account info from ``GOOGLE_CLIENT_EMAIL``/``GOOGLE_PRIVATE_KEY``.

    Returns ``None`` when neither variable is set; a half-set pair is an error.
    """

    env = os.environ if environ is None else environ
    client_email = env.get(ENV_CLIENT_EMAIL) or ""
    private_key = env.get(ENV_PRIVATE_KEY) or ""
    if not client_email.strip() and not private_key.strip():
        return None
    return _checked(
        {
            "type": "service_account",
            "client_email": client_email,
            "private_key": private_key,
            "token_uri": _TOKEN_URI,
        },
        "environment credentials",
    )


__all__ = [
    "CredentialsFileInvalidError",
    "ENV_CLIENT_EMAIL",
    "ENV_PRIVATE_KEY",
    "REQUIRED_FIELDS",
    "load_service_account_file",
    "service_account_info_from_env",
]
