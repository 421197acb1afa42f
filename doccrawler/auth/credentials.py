"""Credential resolution from explicit values and the environment."""

from __future__ import annotations

import logging
import os
from typing import Optional, Sequence

from ..models import Credentials

logger = logging.getLogger(__name__)

ENV_PREFIXES = ("DOCCRAWLER",)


def resolve_credentials(username: Optional[str] = None, password: Optional[str] = None,
                        env_prefixes: Sequence[str] = ENV_PREFIXES) -> Optional[Credentials]:
    """Build ``Credentials`` from arguments, then ``{PREFIX}_USERNAME`` / ``{PREFIX}_PASSWORD``.

    Returns ``None`` unless both values are found.
    """
    creds = Credentials(username=username or "", password=password or "")
    if creds.is_complete:
        return creds

    for prefix in env_prefixes:
        if not creds.username:
            creds.username = os.environ.get(f"{prefix}_USERNAME", "")
        if not creds.password:
            creds.password = os.environ.get(f"{prefix}_PASSWORD", "")

    if creds.is_complete:
        logger.info("[AUTH] Credentials resolved from environment")
        return creds
    if creds.username or creds.password:
        logger.warning("[AUTH] Credentials incomplete, running without login")
    return None
