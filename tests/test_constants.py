"""
Centralized test credentials and secrets.

All test-only credentials are loaded from environment variables when available,
with clearly non-production placeholders as fallbacks.
"""

from __future__ import annotations

import os

# App config used by conftest
TEST_SECRET_KEY = os.environ.get("TEST_SECRET_KEY") or "test-secret-key"
TEST_WEBHOOK_SECRET = os.environ.get("TEST_WEBHOOK_SECRET") or "test-webhook-token"

# Identity-provider ids for fixtures
TEST_ORG_ID = "org_acme"
TEST_OTHER_ORG_ID = "org_globex"
TEST_USER_ID = "user_alice"
TEST_OTHER_USER_ID = "user_bob"

# OAuth tokens: obviously placeholders
TEST_ACCESS_TOKEN_PLACEHOLDER = os.environ.get("TEST_ACCESS_TOKEN") or "a.b.c"
TEST_REFRESH_TOKEN_PLACEHOLDER = os.environ.get("TEST_REFRESH_TOKEN") or "r"
