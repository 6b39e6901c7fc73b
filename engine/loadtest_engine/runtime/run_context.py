"""
Run identifiers.
"""

import re
from datetime import UTC, datetime
from uuid import uuid4


def generate_run_id(prefix: str = "run") -> str:
    """
    Generate a unique run ID.

    Format: {prefix}_{timestamp}_{uuid8}
    Example: self_issue_20240115_143022_a1b2c3d4

    Args:
        prefix: ID prefix (typically the test name)

    Returns:
        Unique run ID string, safe to use as a directory name.
    """
    safe_prefix = re.sub(r"[^A-Za-z0-9_-]+", "-", prefix).strip("-") or "run"
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    short_uuid = uuid4().hex[:8]
    return f"{safe_prefix}_{timestamp}_{short_uuid}"
