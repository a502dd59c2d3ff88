import os
import secrets
from datetime import datetime, timezone as dt_timezone
from typing import Optional

VIDEO_PREFIX = "streaming_videodata"
AUDIO_PREFIX = "streaming_audiodata"


def file_extension(name: str) -> str:
    """Lower-cased extension including the dot, '' when the name has none."""
    return os.path.splitext(os.path.basename(name or ""))[1].lower()


def generate_stored_name(prefix: str, original_name: str) -> str:
    """<prefix>_<32 hex chars><ext>, e.g. streaming_videodata_3fa1...e0.mp4"""
    return f"{prefix}_{secrets.token_hex(16)}{file_extension(original_name)}"


def epoch_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_timezone.utc)
    return int(value.timestamp() * 1000)
