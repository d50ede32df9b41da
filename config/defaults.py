from __future__ import annotations

# Quota policy
GLOBAL_DAILY_LIMIT = 100
USER_DAILY_LIMIT = 20
USER_MINUTE_LIMIT = 10
MINUTE_WINDOW_SECONDS = 60
DEFAULT_QUOTA_TIMEZONE = "UTC"

# Sessions
SESSION_TTL_SECONDS = 2 * 60 * 60
SESSION_ID_PREFIX = "u_"

# Backlog scheduler
BACKLOG_TICK_SECONDS = 5

# Completion service
DEFAULT_COMPLETION_BASE_URL = "http://127.0.0.1:18789/v1"
DEFAULT_COMPLETION_MODEL = "clawdbot:safe-response"
DEFAULT_CHAT_MODEL = "clawdbot:main"
CHAT_SESSION_PREFIX = "app_user_"
COMPLETION_TIMEOUT_SECONDS = 60
COMPLETION_MAX_TOKENS = 200
DEFAULT_AGENT_RESTRICTIONS = (
    "exec:deny,read:deny,write:deny,browser:deny,nodes:deny,memory_search:deny,web_fetch:deny"
)

# Reply shaping: intended length first, then the platform's absolute limit.
REPLY_SOFT_CHARS = 260
REPLY_HARD_CHARS = 280

REPLY_TASK_TYPE = "tweet_reply"

# Storage / ingress
DEFAULT_DB_PATH = "relay_replies.db"
DEFAULT_GUIDELINES_PATH = "config/reply_guidelines.yaml"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
