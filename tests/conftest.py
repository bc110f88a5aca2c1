import os
import sys

import pytest


# Put the repository root on sys.path so tests can import `pocketllm` and the
# `apps.*` entrypoints without an editable install.
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)


@pytest.fixture
def anyio_backend():
    # The proxy relies on asyncio.Lock and asyncio.to_thread.
    return "asyncio"
