"""Constants and configuration values for the SocialBridge Telegram bridge."""

# Firestore Collection Names
COLLECTION_USERS = "users"
COLLECTION_MESSAGES = "messages"
COLLECTION_CALLS = "calls"

# App Configuration
DEFAULT_DATABASE = "(default)"

# User document fields written on a successful link
FIELD_TELEGRAM_CHAT_ID = "telegram_chat_id"
FIELD_TELEGRAM_CONNECTED = "telegram_connected"
FIELD_TELEGRAM_LINKED_AT = "telegram_linked_at"

# Media Types (as stored in message records)
MEDIA_TYPE_IMAGE = "image"
MEDIA_TYPE_VIDEO = "video"
MEDIA_TYPE_VOICE = "voice"

# Call Types
CALL_TYPE_VOICE = "voice"

# Link tokens
LINK_COMMAND = "start"
LINK_TOKEN_ALGORITHM = "HS256"
LINK_TOKEN_USER_CLAIM = "userId"
LINK_TOKEN_DEFAULT_TTL = 24 * 60 * 60  # seconds

# Record ids are derived from the Telegram update, see dispatcher.record_id()
RECORD_ID_PREFIX = "tg"

# Timeouts
DEFAULT_MEDIA_TIMEOUT = 20  # seconds
DEFAULT_STORE_TIMEOUT = 10  # seconds

# Telegram
TELEGRAM_FILE_URL = "https://api.telegram.org/file/bot{token}/{file_path}"
TELEGRAM_MAX_MESSAGE_LENGTH = 4096

# Transport modes
TELEGRAM_MODE_WEBHOOK = "webhook"
TELEGRAM_MODE_POLLING = "polling"

# Rate Limiting
RATE_LIMIT_WEBHOOK = "30/minute"
RATE_LIMIT_RETRY_AFTER = 60  # seconds

# Reply languages
LANGUAGE_ARABIC = "ar"
LANGUAGE_ENGLISH = "en"
DEFAULT_LANGUAGE = LANGUAGE_ARABIC

# Local media mirror is served under this path by app/main.py
MEDIA_MIRROR_ROUTE = "/uploads"
