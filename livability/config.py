"""Configuration module for the livability raster engine.

Centralizes data paths, region extent, tile and raster limits, scoring
sentinels and HTTP retry settings.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"

# Cache directories (created by the cache that uses them)
CACHE_DIR = DATA_DIR / "cache"
ELEVATION_CACHE = CACHE_DIR / "elevation"

# Region extent as (west, south, east, north) in degrees (Catalonia)
REGION_EXTENT = (0.16, 40.52, 3.33, 42.86)

# Elevation tiles
TILE_SIZE = 256
COARSE_ZOOM = 9
FINE_ZOOMS = (14, 13, 12)  # lookup order, finest first
DEFAULT_COARSE_DEM_URL = "https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{z}/{x}/{y}.png"
DEFAULT_COARSE_DEM_ENCODING = "terrarium"
DEFAULT_FINE_DEM_URL = (
    "https://geoserveis.icgc.cat/servei/catalunya/contextmaps-terreny-5m-rgb/wmts/{z}/{x}/{y}.png"
)
NODATA_THRESHOLD_M = -1000.0  # decoded elevations below this are no-data
TILE_FETCH_WORKERS = 8
MAX_FINE_TILES_PER_VIEWPORT = 64

# Raster dimensions
MEMBER_MAX_COLS = 256
MEMBER_MAX_ROWS = 192
MAX_RASTER_DIM = 1024
MIN_RASTER_COLS = 100
MIN_RASTER_ROWS = 75
OVERVIEW_COLS = 412
OVERVIEW_ROWS = 308

# Scoring
DISQUALIFIED = -2.0
MANDATORY_EPSILON = 0.001
NEUTRAL_SCORE = 0.5
FLAT_GRADIENT_EPSILON = 1e-6

# Presentation
SCORE_ALPHA = 210
MASK_RGBA = (40, 40, 40, 180)
FLAT_NORMALISATION_SPAN = 0.02
MAX_POOL_SIZE = 16

# HTTP
HTTP_TIMEOUT_S = 30
RETRY_MAX_ATTEMPTS = 5
RETRY_BASE_DELAY_S = 0.5
RETRY_MAX_DELAY_S = 30.0
ELEVATION_API_URL = "https://api.open-meteo.com/v1/elevation"
ELEVATION_API_CHUNK = 100
ELEVATION_API_COURTESY_DELAY_S = 0.12

# Default settings
DEFAULT_LOG_LEVEL = "INFO"
