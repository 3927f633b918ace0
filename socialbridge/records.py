"""Message and call records written to the application store."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class MessageRecord:
    """One captured Telegram message, as the web app's chat view reads it."""

    record_id: str
    sender: str
    content: str
    timestamp: datetime
    media: Optional[str] = None
    media_type: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "content": self.content,
            "media": self.media,
            "media_type": self.media_type,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CallRecord:
    """A call log entry. Voice notes from Telegram have no receiver."""

    record_id: str
    caller: str
    duration: int
    call_type: str
    timestamp: datetime
    media_url: Optional[str] = None
    receiver: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "caller": self.caller,
            "receiver": self.receiver,
            "duration": self.duration,
            "media_url": self.media_url,
            "call_type": self.call_type,
            "timestamp": self.timestamp,
        }
