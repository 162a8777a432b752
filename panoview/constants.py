# Every zoom level uses square tiles of this many pixels.
TILE_SIZE = 512

MIN_ZOOM = 1
MAX_ZOOM = 7
DEFAULT_ZOOM = 3

# Upper bound for a single pixel buffer (zoom 7).
MAX_PANORAMA_PIXELS = 65536 * 32768

TILE_URL = "https://cbk0.google.com/cbk?output=tile&panoid={panoid}&zoom={zoom}&x={x}&y={y}"

# The tile host rate-limits bursts; more in-flight requests only raise the failure rate.
DEFAULT_CONCURRENCY = 8
DEFAULT_RETRIES = 4
DEFAULT_BACKOFF = 0.5
DEFAULT_TIMEOUT = 30.0

# A channel value at or below this counts as black when cropping borders.
BLACK_THRESHOLD = 4
MISSING_COLOR = (0, 0, 0)

DEFAULT_FOV = 90.0
MAX_FOV = 170.0
DEFAULT_VIEW_SIZE = (640, 640)
