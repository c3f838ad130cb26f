REDIS_LIST_SEQ_KEY = "list:seq" # counter for list ids
REDIS_ITEM_SEQ_KEY = "item:seq" # counter for item ids
REDIS_LIST_META_KEY = "list:meta:{list_id}" # list id - hash of list fields
REDIS_LIST_SLUG_KEY = "list:slug:{slug}" # public slug -> list id
REDIS_LIST_ITEMS_KEY = "list:items:{list_id}" # list id - hash item id -> item json
REDIS_ITEM_LIST_KEY = "item:list:{item_id}" # item id -> owning list id
REDIS_LIST_SESSIONS_KEY = "list:sessions:{list_id}" # list id - zset session id scored by last activity
REDIS_SESSION_KEY = "session:{session_id}" # session id - session metadata
REDIS_LIST_CHANNEL = "list:channel:{list_id}" # list id - pub/sub channel name

# **Example `list:meta:{id}` hash fields** (values are json encoded)
# - `id` = `{listId}`
# - `slug` = `Alpha-Bravo-123`
# - `title` = "My List"
# - `password` = cleartext shared password (optional)
# - `created_at` / `updated_at` = ISO timestamps
# - `expires_at` = ISO timestamp (Redis TTL does the actual expiry)
