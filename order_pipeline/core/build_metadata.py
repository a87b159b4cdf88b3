# order_pipeline/core/build_metadata.py
import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def load_build_metadata(path: str) -> Optional[dict]:
    """Read the build-metadata.json written at image build time (component, gitSha, buildDate)."""
    metadata_file = Path(path)
    if not metadata_file.is_file():
        return None
    try:
        return json.loads(metadata_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Build metadata unreadable", extra={"path": path, "error": str(e)})
        return None


def log_build_metadata(path: str, component: str) -> Optional[dict]:
    metadata = load_build_metadata(path)
    if metadata is None:
        logger.info("Build metadata not found (development mode?)", extra={"component": component, "path": path})
        return None
    logger.info(
        "Build metadata",
        extra={
            "component": metadata.get("component", component),
            "git_sha": metadata.get("gitSha"),
            "build_date": metadata.get("buildDate"),
        },
    )
    return metadata
