"""Root conftest: pins the environment before realtime_sync.config is imported."""
from __future__ import annotations

import os
from pathlib import Path

_TEST_ENV = {
    "API_BASE_URL": "http://api.test",
    "WS_BASE_URL": "ws://api.test",
    "AUTH_TOKEN": "test-token",
    "LIVE_CHANNELS_ENABLED": "true",
}

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for line in _env_test.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())

for key, value in _TEST_ENV.items():
    os.environ.setdefault(key, value)
