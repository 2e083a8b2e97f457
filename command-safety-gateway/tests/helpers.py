"""Shared helper functions for Command Safety Gateway tests.

Import these in test files: from helpers import mock_subprocess_result, ...
Fixtures are in conftest.py and are auto-injected by pytest.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock


# ---------------------------------------------------------------------------
# Subprocess mock helper
# ---------------------------------------------------------------------------

def mock_subprocess_result(stdout=b"", stderr=b"", returncode=0):
    """Create a mock subprocess.CompletedProcess with captured bytes."""
    result = MagicMock()
    result.stdout = stdout.encode("utf-8") if isinstance(stdout, str) else stdout
    result.stderr = stderr.encode("utf-8") if isinstance(stderr, str) else stderr
    result.returncode = returncode
    return result


# ---------------------------------------------------------------------------
# Audit log reader helper
# ---------------------------------------------------------------------------

def read_audit_records(audit_dir, session_id="test_session"):
    """Read all audit records from a session's JSONL file."""
    filepath = Path(audit_dir) / f"gateway_audit_{session_id}.jsonl"
    if not filepath.exists():
        return []
    records = []
    for line in filepath.read_text().strip().split("\n"):
        if line:
            records.append(json.loads(line))
    return records
