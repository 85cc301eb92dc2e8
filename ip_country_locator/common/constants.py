IPLOC_CONFIG = "IPLOC_CONFIG"

IPLOC_HOST = "IPLOC_HOST"
IPLOC_PORT = "IPLOC_PORT"

# Path of the JSON snapshot backing the range store. Empty string keeps the store in memory only.
IPLOC_SNAPSHOT_PATH = "IPLOC_SNAPSHOT_PATH"

IPLOC_REFRESH_INTERVAL = "IPLOC_REFRESH_INTERVAL"

IPLOC_FETCH_TIMEOUT = "IPLOC_FETCH_TIMEOUT"
IPLOC_FETCH_RETRIES = "IPLOC_FETCH_RETRIES"
IPLOC_FETCH_RETRY_DELAY = "IPLOC_FETCH_RETRY_DELAY"

IPLOC_CACHE_TTL = "IPLOC_CACHE_TTL"
IPLOC_HOT_CACHE_SIZE = "IPLOC_HOT_CACHE_SIZE"

IPLOC_LOG_SAMPLE_INTERVAL = "IPLOC_LOG_SAMPLE_INTERVAL"

# Returned by the store when no range contains the address. Never written to a cache.
UNKNOWN_COUNTRY = "ZZ"

USER_AGENT = "IPLocator/1.0"

DAY_SECONDS = 86400
