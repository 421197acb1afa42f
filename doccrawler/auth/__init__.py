"""
Authentication
==============
- ``find_login_page``: locate the login screen for an app URL
- ``authenticate``: sign in through natural-language browser actions
- ``resolve_credentials``: explicit values, then ``DOCCRAWLER_*`` env vars

Session-expiry detection lives in ``doccrawler.guard``.
"""

from .credentials import resolve_credentials
from .login import LoginConfig, authenticate, find_login_page

__all__ = ["LoginConfig", "authenticate", "find_login_page", "resolve_credentials"]
