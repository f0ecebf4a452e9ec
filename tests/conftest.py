"""Shared test configuration."""
from __future__ import annotations

import os
import tempfile

# Settings are read at import time, so point the app at a throwaway database first.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(prefix='meetmesh-'), 'test.db')}",
)
