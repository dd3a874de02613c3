import os

LOG_PATH = os.environ.get("LOG_PATH", "/app/data/laundry_log.jsonl")
TZ_NAME = os.environ.get("TZ", "America/New_York")
SOURCE_URL = os.environ.get("SOURCE_URL", "https://laundryconnect.net/conncollege/cc.html")
SOURCE_BASE_URL = os.environ.get("SOURCE_BASE_URL", "https://laundryconnect.net/")
SOURCE_MARKER = os.environ.get("SOURCE_MARKER", "Connecticut College")
APP_LOG_PATH = os.environ.get("APP_LOG_PATH", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
REFRESH_ON_STARTUP = os.environ.get("REFRESH_ON_STARTUP", "1") == "1"
RETENTION_DAYS = 30
STALE_AFTER_S = 1800  # 30 minutes
REFRESH_INTERVAL_S = 3600  # 1 hour
WEEK_DAYS = 7
HEALTH_TIMEOUT_S = 10
FETCH_TIMEOUT_S = 30
USER_AGENT = "laundrylog/1.0"
