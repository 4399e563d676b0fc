# Make `import stream_proxy` resolve to this checkout when tests run without an install.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from stream_proxy.utils_tests.upstream_double import write_config  # noqa: E402


@pytest.fixture
def config_path(tmp_path):
    """A config file with one user, pinned to a known mtime."""
    return str(write_config(tmp_path / "config.json", mtime_ns=1_000_000_000))
