"""Turn an accepted voice note into a call log entry."""
from datetime import datetime, timedelta
from typing import Optional, Union

from .constants import CALL_TYPE_VOICE
from .records import CallRecord


def synthesize_call(
    record_id: str,
    sender: str,
    media_url: str,
    duration: Optional[Union[int, timedelta]],
    timestamp: datetime,
) -> CallRecord:
    """Build the CallRecord that accompanies a voice MessageRecord.

    Every voice note gets its own call entry; nothing is merged. Telegram
    reports the duration in whole seconds (newer python-telegram-bot releases
    hand it over as a timedelta). A missing or negative value is
    stored as 0.
    """
    if isinstance(duration, timedelta):
        duration = duration.total_seconds()
    seconds = int(duration or 0)
    if seconds < 0:
        seconds = 0
    return CallRecord(
        record_id=record_id,
        caller=sender,
        duration=seconds,
        media_url=media_url,
        call_type=CALL_TYPE_VOICE,
        timestamp=timestamp,
    )
