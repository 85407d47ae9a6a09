"""Shared constants across the application."""

# Entry metadata stamped by the product reconciler
META_FINGERPRINT = "_sync_fingerprint"
META_REMOTE_ID = "_sync_remote_id"
META_REMOTE_SLUG = "_sync_remote_slug"
META_PRODUCT_CODE = "product_code"
META_APPLICATIONS = "applications_tab"
META_KEY_FEATURES = "key_features_tab"
META_SPECIFICATIONS = "specifications_tab"

# State store keys
STATE_CURRENT_BATCH = "current_batch"
STATE_LAST_BATCH = "last_batch"
STATE_PROGRESS = "progress"
STATE_LAST_SYNC_STARTED = "last_sync_started_at"
STATE_LAST_SYNC_COMPLETED = "last_sync_completed_at"
STATE_LAST_SYNC_STATS = "last_sync_stats"
STATE_LAST_STEP_AT = "last_step_at"
STATE_WORKER_STATUS = "background_worker_status"
STATE_WORKER_LOCK = "background_worker_lock"
STATE_RETRY_DONE_PREFIX = "retry_done:"

# Cache keys
CACHE_PROGRESS = "progress"

# Scheduled action hooks
HOOK_HEALTHCHECK = "background_healthcheck"
HOOK_PROCESS_QUEUE_ITEM = "background_process_queue_item"

# Background task queue names
PRODUCT_SYNC_QUEUE = "product_sync"

# Batch ids
BATCH_ID_PREFIX = "sync_"
