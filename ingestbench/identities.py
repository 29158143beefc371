"""Device credential loading."""
from __future__ import annotations

import json
from pathlib import Path
from typing import List


class IdentitySourceError(RuntimeError):
    """Raised when no usable device credentials can be read."""


def _from_json(text: str, path: Path) -> List[str]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise IdentitySourceError(f"Invalid JSON in token file {path}: {exc}") from exc
    if isinstance(data, dict):
        tokens = [str(token) for _name, token in sorted(data.items())]
    elif isinstance(data, list):
        tokens = [str(token) for token in data]
    else:
        raise IdentitySourceError(f"{path} must contain a JSON object or a list of tokens")
    return [token.strip() for token in tokens if str(token).strip()]


def load_identities(path: Path) -> List[str]:
    """Return the device tokens in file order.

    Plain text files hold one token per line; blank lines are ignored. A file
    ending in ``.json`` may hold either ``{"device-name": "token"}`` (sorted by
    name) or ``["token", ...]``.
    """
    if not path.exists():
        raise IdentitySourceError(f"Token file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise IdentitySourceError(f"Failed to read token file {path}: {exc}") from exc

    if path.suffix.lower() == ".json":
        tokens = _from_json(text, path)
    else:
        tokens = [line.strip() for line in text.splitlines() if line.strip()]

    if not tokens:
        raise IdentitySourceError(f"Token file {path} is empty or holds no valid device tokens")
    return tokens
