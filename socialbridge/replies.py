"""User-facing reply texts, keyed by (event kind, outcome) and language."""
import logging
from typing import Dict, Tuple

from .constants import DEFAULT_LANGUAGE, LANGUAGE_ARABIC, LANGUAGE_ENGLISH

logger = logging.getLogger(__name__)

# Event kinds
KIND_LINK = "link"
KIND_TEXT = "text"
KIND_PHOTO = "photo"
KIND_VIDEO = "video"
KIND_VOICE = "voice"

# Outcomes
OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_SAVED = "saved"

REPLIES: Dict[str, Dict[Tuple[str, str], str]] = {
    LANGUAGE_ARABIC: {
        (KIND_LINK, OUTCOME_SUCCESS): (
            "✅ تم ربط حسابك بنجاح! يمكنك الآن إرسال واستقبال الرسائل والمكالمات عبر Telegram."
        ),
        (KIND_LINK, OUTCOME_FAILURE): (
            "❌ الرابط غير صالح. يرجى تسجيل الدخول إلى الموقع وإنشاء رابط جديد."
        ),
        (KIND_TEXT, OUTCOME_SAVED): "📩 تم حفظ رسالتك في محادثتك على الموقع.",
        (KIND_PHOTO, OUTCOME_SAVED): "📷 تم حفظ الصورة في محادثتك على الموقع.",
        (KIND_VIDEO, OUTCOME_SAVED): "🎥 تم حفظ الفيديو في محادثتك على الموقع.",
        (KIND_VOICE, OUTCOME_SAVED): "🎙 تم حفظ الرسالة الصوتية في محادثتك على الموقع.",
    },
    LANGUAGE_ENGLISH: {
        (KIND_LINK, OUTCOME_SUCCESS): (
            "✅ Your account is linked! You can now send and receive messages "
            "and calls through Telegram."
        ),
        (KIND_LINK, OUTCOME_FAILURE): (
            "❌ This link is not valid. Please log in to the website and create a new link."
        ),
        (KIND_TEXT, OUTCOME_SAVED): "📩 Your message was saved to your conversation on the website.",
        (KIND_PHOTO, OUTCOME_SAVED): "📷 Your photo was saved to your conversation on the website.",
        (KIND_VIDEO, OUTCOME_SAVED): "🎥 Your video was saved to your conversation on the website.",
        (KIND_VOICE, OUTCOME_SAVED): "🎙 Your voice message was saved to your conversation on the website.",
    },
}


def normalize_language(language: str | None) -> str:
    """Map a configured language code onto one we have texts for."""
    code = (language or "").strip().lower().split("-", 1)[0]
    if code in REPLIES:
        return code
    if code:
        logger.warning(f"No reply texts for language '{language}', using '{DEFAULT_LANGUAGE}'")
    return DEFAULT_LANGUAGE


def reply_text(kind: str, outcome: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Look up the reply for ``(kind, outcome)``.

    Raises:
        KeyError: No such (kind, outcome) pair exists.
    """
    return REPLIES[normalize_language(language)][(kind, outcome)]
