from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger("baya.app")


class _KeepMissing(dict):
    """format_map mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Read a prompt template as UTF-8 text without a leading BOM.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: Reads the filesystem.
    Dependencies: Used by ModelComposer and the realtime session route.
    Failure Modes: Invalid UTF-8 bytes are dropped with a warning. A missing
        file raises OSError.
    If Removed: The model-delegated strategy has no system instruction.
    Testing Notes: Write a BOM-prefixed or latin-1 file into tmp_path.
    """
    # Decode once; only fall back to lossy decoding for broken files.
    raw = prompt_path.read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("prompt_decode_lossy path=%s", prompt_path.name)
        text = raw.decode("utf-8", errors="ignore")
    return text.lstrip("\ufeff")


def render_prompt(template: str, values: Dict[str, Any]) -> str:
    """Fill {placeholders} in a prompt template; unknown ones are kept as written."""
    return template.format_map(_KeepMissing({key: "" if value is None else value for key, value in values.items()}))
