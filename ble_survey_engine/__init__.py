"""BLE Survey Engine package.

This package provides:
- SampleBuffer / CollectionWindow: per-beacon RSSI sample streams with gap markers
- compute_statistics / build_histogram: robust RSSI fingerprints (median/MAD/P10/P90, histogram)
- distance_kit: pixel/metric planar and 3D beacon distances
- RecordAssembler: immutable survey records per collection window
- SurveyPointStore: coordinate-keyed, location-scoped session aggregation
- PointQuality: per-point dwell time, angular coverage and quality tier
- ConfigManager: YAML-based configuration management
- MQTTSurveyProcessor: MQTT ingestion of completed collection windows
"""

from .assembler import RecordAssembler, summarize_record
from .beacon_store import BeaconGeometryStore
from .collector import SurveyCollector, WindowContext, parse_window_payload
from .config_manager import ConfigManager
from .errors import (
    CoordinateKeyMismatch,
    DegenerateScale,
    DuplicateRecord,
    HistogramConfigError,
    InsufficientSamples,
    NoActiveLocation,
    PersistenceUnavailable,
    SurveyEngineError,
)
from .histogram import build_histogram, merge_histograms
from .mqtt_processor import MQTTSurveyProcessor
from .models import make_key, parse_key
from .persistence import FileBlobStore, MemoryBlobStore, ScanArchive
from .quality import AngularCoverage, PointQuality, QualityTier
from .reducer import StatisticsMethod, compute_statistics, reduce_statistics
from .sample_buffer import CollectionWindow, SampleBuffer
from .survey_store import SurveyPointStore

__all__ = [
    "RecordAssembler",
    "summarize_record",
    "BeaconGeometryStore",
    "SurveyCollector",
    "WindowContext",
    "parse_window_payload",
    "ConfigManager",
    "CoordinateKeyMismatch",
    "DegenerateScale",
    "DuplicateRecord",
    "HistogramConfigError",
    "InsufficientSamples",
    "NoActiveLocation",
    "PersistenceUnavailable",
    "SurveyEngineError",
    "build_histogram",
    "merge_histograms",
    "MQTTSurveyProcessor",
    "make_key",
    "parse_key",
    "FileBlobStore",
    "MemoryBlobStore",
    "ScanArchive",
    "AngularCoverage",
    "PointQuality",
    "QualityTier",
    "StatisticsMethod",
    "compute_statistics",
    "reduce_statistics",
    "CollectionWindow",
    "SampleBuffer",
    "SurveyPointStore",
]
