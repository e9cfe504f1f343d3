"""
Configuration constants for the hardlink deduplicator.
"""

# --- Index & Locking ---
# Both files live at the root of the tree being deduplicated.
INDEX_FILE_NAME = ".index_file.csv"
LOCK_FILE_NAME = ".index_file.lock"

# Column order of the index file. Changing this invalidates every existing index.
INDEX_COLUMNS = ["path", "size", "mtime_ns", "device", "inode", "fingerprint"]

# --- Hashing ---
HASH_ALGORITHM = "sha256"
HASH_CHUNK_SIZE = 1024 * 1024  # 1 MB chunks for reading

# --- Linking ---
# Temporary link names look like ".<name>.<token>.hldedup-tmp" inside the
# duplicate's own directory, so the final rename never crosses a directory.
TEMP_LINK_SUFFIX = ".hldedup-tmp"
TEMP_LINK_ATTEMPTS = 16

# --- Performance ---
DEFAULT_MAX_WORKERS = 4
