"""Utility functions shared by the service and the analysis pipeline."""

import os
import re
import sys
from datetime import UTC, datetime
from pathlib import Path

STREAM_ID_PATTERN = re.compile(r"(?:videodelivery\.net|cloudflarestream\.com)/([a-zA-Z0-9]+)")


def ensure_data_dir(create_if_missing: bool = True) -> Path:
    """Ensure FACETAG_DIR exists and is writable.

    Args:
        create_if_missing: If True, create directory if it doesn't exist.
                          If False, fail if directory doesn't exist.

    Returns:
        Path to FACETAG_DIR

    Raises:
        SystemExit: If environment variable missing, directory missing (and not creating),
                   creation fails, or permissions invalid.
    """
    data_dir = os.getenv("FACETAG_DIR")

    if not data_dir:
        print(
            "ERROR: FACETAG_DIR environment variable is not set.\n"
            + "Please set it to a valid directory path.",
            file=sys.stderr,
        )
        raise SystemExit(1)

    dir_path = Path(data_dir)

    if not dir_path.exists():
        if not create_if_missing:
            print(
                f"ERROR: FACETAG_DIR does not exist: {dir_path}\n" + f"Run: mkdir -p {dir_path}",
                file=sys.stderr,
            )
            raise SystemExit(1)
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
            print(f"Created FACETAG_DIR: {dir_path}")
        except (OSError, PermissionError) as e:
            print(
                f"ERROR: Failed to create FACETAG_DIR: {dir_path}\n"
                + f"Reason: {e}\n"
                + "Please ensure the parent directory exists and you have write permissions.",
                file=sys.stderr,
            )
            raise SystemExit(1)

    if not dir_path.is_dir():
        print(
            f"ERROR: FACETAG_DIR is not a directory: {dir_path}",
            file=sys.stderr,
        )
        raise SystemExit(1)

    # Read & Write required for DB and local thumbnails
    if not os.access(dir_path, os.R_OK | os.W_OK):
        print(
            f"ERROR: FACETAG_DIR exists but is not accessible: {dir_path}\n"
            + "Please ensure you have read and write permissions.",
            file=sys.stderr,
        )
        raise SystemExit(1)

    return dir_path


def get_db_url() -> str:
    data_dir = ensure_data_dir(create_if_missing=True)
    return f"sqlite:///{data_dir}/facetag.db"


def now_timestamp() -> int:
    """Return current UTC timestamp in milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def extract_stream_id(video_url: str | None) -> str | None:
    """Extract the delivery provider's video id from a stream or delivery URL."""
    if not video_url:
        return None
    match = STREAM_ID_PATTERN.search(video_url)
    return match.group(1) if match else None
