"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3
    INVALID_INPUT = 4


class Modes(Enum):
    """Which rankings the CLI computes.

    Args:
        Enum (string): Ranking modes supported by the program.
    """

    SIMILAR = "similar"
    COOCCUR = "cooccur"
    BOTH = "both"


class OutputFormats(Enum):
    """Export formats supported by the program."""

    JSON = "json"
    CSV = "csv"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_PYPI = "https://pypi.org/pypi/"
    LIBRARIES_IO_API_BASE = "https://libraries.io/api/"
    POPULAR_PACKAGES_URL = (
        "https://hugovk.github.io/top-pypi-packages/top-pypi-packages-30-days.min.json"
    )
    ENV_LIBRARIES_IO_API_KEY = "LIBRARIES_IO_API_KEY"
    ENV_DATA_DIR = "DEPSIM_DATA_DIR"
    ENV_LOG_LEVEL = "DEPSIM_LOG_LEVEL"
    ENV_LOG_FORMAT = "DEPSIM_LOG_FORMAT"

    MODES = [m.value for m in Modes]
    OUTPUT_FORMATS = [f.value for f in OutputFormats]
    DEFAULT_LIMIT = 20
    MAX_LIMIT = 100
    DEFAULT_DATA_DIR = "data"

    # On-disk index layout
    POPULAR_FILE = "popular.json"
    SIMILAR_INDEX_FILE = "similarIndex.1000.json"
    REVERSE_DEPS_SHARD_PREFIX = "reverseDeps-"
    REVERSE_DEPS_LEGACY_FILES = ["reverseDeps.csv.json", "reverseDeps.1000.json"]
    BITSET_ID_MAP_FILE = "pkg-id-map.json"
    BITSET_META_FILE = "meta.json"
    BITSET_DEPENDENTS_DIR = "dependents"
    BITSET_DEFAULT_BUCKET_SIZE = 10000

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
    USER_AGENT = "depsim/0.1 (+https://pypi.org)"

    # Synchronous HTTP (catalog download)
    REQUEST_TIMEOUT = 30  # Timeout in seconds for blocking HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_CACHE_TTL_SEC = 300

    # Result cache for the lookup service
    RESULT_CACHE_MAX_ENTRIES = 1000
    RESULT_CACHE_TTL_SEC = 15 * 60
