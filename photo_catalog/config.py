"""
Configuration constants for the photo catalog.
"""

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.gif', '.heic', '.webp',
              '.tif', '.tiff', '.cr2', '.cr3', '.nef', '.arw', '.dng'}
VIDEO_EXTS = {'.mp4', '.mov', '.m4v', '.avi', '.mts', '.m2ts', '.3gp', '.mpg', '.mpeg'}

# Companion metadata files (Google Takeout style) never get cataloged themselves
SIDECAR_EXT = '.json'

# Edit/duplicate markers stripped from a stem when looking for its sidecar.
# Applied cumulatively in this order: "IMG_1-editat(1).jpg" -> "IMG_1.jpg.json"
SIDECAR_STRIP_SUFFIXES = ('(1)', '-editat', '-edited')

# Sidecar "timestamp" values are epoch seconds
SIDECAR_TIMESTAMP_UNIT_MS = 1000

# --- Timestamp Inference ---
# Anything before 1980-01-01 (the FAT epoch) means the filesystem had no real value
MIN_PLAUSIBLE_MILLIS = 315532800000

# Date-only filename matches ("yyyyMMdd") are accepted only inside this range
DATE_ONLY_YEAR_RANGE = (2000, 2050)

DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# Priority: Original -> Encoded -> Tagged
VIDEO_DATE_FIELDS = [
    "recorded_date",
    "encoded_date",
    "tagged_date",
]

# --- Scanning ---
RESOLVE_TIMEOUT_SECONDS = 8.0
SCAN_WORKERS = 8
# Owner root = depth 1, one folder below it = depth 2
SCAN_MAX_DEPTH = 2
# How often the scanner wakes up to check for timed-out files
SCAN_POLL_SECONDS = 0.25
# Hung inference threads tolerated per scan. While under this bound, a pool
# whose workers are all hung is replaced and its queued files move over.
SCAN_MAX_ABANDONED = 32

# --- Catalog ---
# Seconds a connection waits on a locked database before failing
DB_BUSY_TIMEOUT_SECONDS = 10.0

# --- Reconciliation ---
INSERT_BATCH_SIZE = 512

# --- Downloads ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading
CACHE_CONTROL = "no-cache"

# --- Environment ---
ENV_STORAGE = "PHOTO_CATALOG_STORAGE"
ENV_DB = "PHOTO_CATALOG_DB"
DEFAULT_DB_NAME = "photo_catalog.db"
LOG_FILE_NAME = "photo_catalog.log"

# --- Uploads ---
# Upper bound on "<stem>-<created_ms>-<n>" attempts before giving up
UPLOAD_MAX_RENAMES = 100

# --- Previews ---
# Lives under the storage root; logins cannot start with '.' so it is never scanned
PREVIEW_DIR_NAME = ".previews"
PREVIEW_TARGET_SIZE = 500   # shorter side, in pixels
PREVIEW_JPEG_QUALITY = 70

# Keys exifread adds that are not tags (embedded thumbnails, maker blobs)
EXIF_SKIP_KEYS = {'JPEGThumbnail', 'TIFFThumbnail', 'Filename', 'EXIF MakerNote'}
