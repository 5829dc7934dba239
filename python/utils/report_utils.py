"""
Utility functions for cleanup report generation and saving.

This module provides functions to:
- Format sizes for humans
- Render the per-repository cleanup summary as a table
- Save reports as JSON with timestamped filenames
"""
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from utils.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================

def sizeof_fmt(num: float, suffix: str = "B") -> str:
	"""Format bytes into human-readable size.

	Args:
	    num: Number of bytes
	    suffix: Suffix to append (default: "B")

	Returns:
	    Formatted string like "1.5GiB", "500MiB", etc.
	"""
	for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
		if abs(num) < 1024.0:
			return f"{num:3.1f}{unit}{suffix}"
		num /= 1024.0
	return f"{num:.1f}Yi{suffix}"


def format_cleanup_table(rows: List[Dict[str, Any]]) -> str:
    """Render cleanup summaries (RepositoryCleanupResult.to_dict()) as a grid table"""
    headers = ["Repository", "Images", "In use", "Candidates", "Deleted", "Failed", "Reclaimable"]
    table_rows = [
        [
            row["repository"],
            row["total_images"],
            row["protected_images"],
            len(row["candidates"]),
            len(row["deleted"]),
            len(row["failures"]) + (1 if row.get("error") else 0),
            sizeof_fmt(row["reclaimable_bytes"]),
        ]
        for row in rows
    ]
    return tabulate(table_rows, headers=headers, tablefmt="grid")


# ============================================================================
# Timestamp Utilities
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/ecr-cleanup.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/ecr-cleanup-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Report Saving Functions
# ============================================================================

def _to_jsonable(data: Any) -> Any:
    """Recursively convert datetimes, sets and tuples into JSON friendly values"""
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    elif isinstance(data, (set, frozenset)):
        try:
            return [_to_jsonable(item) for item in sorted(data)]
        except TypeError:
            return [_to_jsonable(item) for item in data]
    elif isinstance(data, dict):
        return {k: _to_jsonable(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        return [_to_jsonable(item) for item in data]
    return data


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    p = Path(path)

    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))

    p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, 'w') as f:
        json.dump(_to_jsonable(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)
