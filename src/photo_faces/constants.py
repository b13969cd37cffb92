"""Configuration loader and defaults.

Values are loaded from config/config.yaml when available, otherwise the
dataclass defaults are used. Each section is a dataclass with a
``from_config`` classmethod that reads its part of the YAML document.
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Path to the default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yaml"

SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".bmp")

PEOPLE_STORE_VERSION = 1


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Uses default if None.

    Returns:
        Configuration dictionary, empty if the file is missing or unreadable.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")

    return {}


def _get_nested(config: Dict, *keys: str, default: Any = None) -> Any:
    """Get nested config value with default fallback."""
    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
        if value is None:
            return default
    return value


# ============================================================
# Recognition Options
# ============================================================

@dataclass(frozen=True)
class RecognitionOptions:
    """Options applied to every recognition call."""
    # Faces with a smaller side below this (pixels) are dropped
    min_face_size: int = 20
    # Faces with a larger side above this are dropped; 0 disables
    max_face_size: int = 0
    # Minimum detector confidence for a face to be kept
    detection_confidence_threshold: float = 0.7
    # Minimum cosine similarity for a match to be accepted
    match_confidence_threshold: float = 0.6
    # Keep at most this many faces per image; 0 disables
    max_faces_per_image: int = 20
    enable_landmarks: bool = True
    enable_attributes: bool = True

    def __post_init__(self):
        for name in ("min_face_size", "max_face_size", "max_faces_per_image"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer", field=name)

        if not 0.0 <= self.detection_confidence_threshold <= 1.0:
            raise ConfigurationError(
                "detection_confidence_threshold must be within [0, 1]",
                field="detection_confidence_threshold",
            )
        if not -1.0 <= self.match_confidence_threshold <= 1.0:
            raise ConfigurationError(
                "match_confidence_threshold must be within [-1, 1]",
                field="match_confidence_threshold",
            )

    @classmethod
    def option_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def merged(self, **partial: Any) -> "RecognitionOptions":
        """Return a copy with the given options replaced.

        Raises:
            ConfigurationError: Unknown option name or invalid value
        """
        unknown = sorted(set(partial) - set(self.option_names()))
        if unknown:
            raise ConfigurationError(f"Unknown recognition option(s): {', '.join(unknown)}")
        try:
            return replace(self, **partial)
        except TypeError as e:
            raise ConfigurationError(f"Invalid recognition option value: {e}")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RecognitionOptions":
        """Create from config dictionary."""
        rec = _get_nested(config, "recognition") or {}
        return cls().merged(**rec)


# ============================================================
# Storage Paths
# ============================================================

@dataclass
class StorageConfig:
    """Locations of the people store, sample images and detection cache."""
    data_dir: Path = Path("data")
    people_file: str = "people.json"
    people_dir: str = "people"
    cache_dir: str = "cache"

    @property
    def people_path(self) -> Path:
        return self.data_dir / self.people_file

    @property
    def samples_path(self) -> Path:
        return self.data_dir / self.people_dir

    @property
    def cache_path(self) -> Path:
        return self.data_dir / self.cache_dir

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "StorageConfig":
        """Create from config dictionary."""
        st = _get_nested(config, "storage") or {}
        return cls(
            data_dir=Path(st.get("data_dir", "data")),
            people_file=st.get("people_file", "people.json"),
            people_dir=st.get("people_dir", "people"),
            cache_dir=st.get("cache_dir", "cache"),
        )


# ============================================================
# Detector Constants
# ============================================================

@dataclass
class DetectorConfig:
    """Face detector backend settings."""
    backend: str = "insightface"
    # InsightFace model pack
    model_name: str = "buffalo_l"
    det_size: Tuple[int, int] = (640, 640)
    # Seconds to wait for one detector call; None waits forever
    timeout: Optional[float] = 60.0
    # Minimum overlap between a requested box and a detected face on assignment
    min_assign_iou: float = 0.3

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectorConfig":
        """Create from config dictionary."""
        det = _get_nested(config, "detector") or {}
        det_size = det.get("det_size", [640, 640])

        return cls(
            backend=det.get("backend", "insightface"),
            model_name=det.get("model_name", "buffalo_l"),
            det_size=tuple(det_size),
            timeout=det.get("timeout", 60.0),
            min_assign_iou=det.get("min_assign_iou", 0.3),
        )


# ============================================================
# HTTP API
# ============================================================

@dataclass
class ApiConfig:
    """HTTP API server settings."""
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ApiConfig":
        """Create from config dictionary."""
        api = _get_nested(config, "api") or {}
        return cls(
            host=api.get("host", "127.0.0.1"),
            port=int(api.get("port", 8000)),
            cors_origins=list(api.get("cors_origins", ["*"])),
        )


@dataclass
class AppConfig:
    """All configuration sections."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    recognition: RecognitionOptions = field(default_factory=RecognitionOptions)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AppConfig":
        return cls(
            storage=StorageConfig.from_config(config),
            recognition=RecognitionOptions.from_config(config),
            detector=DetectorConfig.from_config(config),
            api=ApiConfig.from_config(config),
        )

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "AppConfig":
        """Load all sections from a YAML file."""
        return cls.from_config(load_config(config_path))
