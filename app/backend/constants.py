MAX_UPLOAD_BYTES = 20 * 1024 * 1024   # 20 MB per deck PDF
MAX_REQUEST_BYTES = 21 * 1024 * 1024  # PDF plus multipart framing
CHUNK_SIZE = 1024 * 1024
MIN_DECK_TEXT_CHARS = 50
CHARS_PER_SLIDE_ESTIMATE = 500
