"""
Constants shared across Discubot.
"""

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
SLACK_API_BASE = "https://slack.com/api"
FIGMA_API_BASE = "https://api.figma.com/v1"
RESEND_API_BASE = "https://api.resend.com"

DEFAULT_TRIGGER_KEYWORD = "discubot"
DEFAULT_AI_MODEL = "claude-sonnet-4-5"

# Seconds allowed between a signed webhook timestamp and now.
WEBHOOK_TIMESTAMP_TOLERANCE = 5 * 60

# Notion allows roughly three requests per second per integration.
NOTION_TASK_DELAY = 0.2
NOTION_TITLE_MAX_LENGTH = 2000
NOTION_TEXT_MAX_LENGTH = 2000
NOTION_PAGE_CONTENT_MAX_LENGTH = 5000

AI_CACHE_TTL = 3600
AI_MAX_TASKS = 5

PLACEHOLDER_SECRETS = {"XXXXXXXX", "changeme", "test"}
