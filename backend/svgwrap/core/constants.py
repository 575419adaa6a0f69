"""Constants and default values for svgwrap."""

# Input limits
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB per image

SUPPORTED_MIME_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/svg+xml",
)

# Extension fallbacks when the platform mimetypes table has no entry
EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}

# Orchestration
MIN_CONCURRENCY = 1
PROGRESS_BEFORE_ENCODE = 20
PROGRESS_AFTER_ENCODE = 80
CANCELLED_ERROR = "cancelled"
MAX_ERROR_LENGTH = 200

# History store
HISTORY_SCHEMA_VERSION = 1
HISTORY_RECORD_SIZE_ESTIMATE = 50 * 1024  # coarse per-record average, bytes
HISTORY_RETENTION_DAYS = 30
DEFAULT_HISTORY_DB_PATH = "./data/history.db"

# Delivery
SVG_MIME_TYPE = "image/svg+xml"
SVG_EXTENSION = ".svg"
DELIVERY_DELAY_SECONDS = 0.2
COMBINED_MIME_TYPE = "text/plain"
COMBINED_FILE_NAME = "svg-batch-{date}.txt"
COMBINED_SECTION = "\n<!-- File: {name} -->\n{document}\n\n"

# Wrapper document; width/height/href substituted at encode time
SVG_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="no"?>
<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">
<svg version="1.1" id="Layer_1" xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" x="0px" y="0px" width="{width}" height="{height}" viewBox="0 0 {width} {height}" enable-background="new 0 0 {width} {height}" xml:space="preserve">
  <image id="image0" width="{width}" height="{height}" x="0" y="0" href="{href}" />
</svg>"""
