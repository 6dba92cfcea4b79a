"""Rate-limited FMP ingestion pipeline."""

from .config import EndpointClass, IngestSettings, load_dotenv, load_settings
from .fetch_executor import FetchError, FetchExecutor, FetchResult
from .fmp_client import FMPClient
from .orchestrator import RunOrchestrator
from .rate_control import RateController
from .record_builder import RecordBuildError, RecordBuilder
from .records import DataQuality, StockRecord
from .status import RunState
from .store import StockStore, StoreError
from .universe import Symbol

__all__ = [
    "EndpointClass",
    "IngestSettings",
    "load_dotenv",
    "load_settings",
    "FetchError",
    "FetchExecutor",
    "FetchResult",
    "FMPClient",
    "RunOrchestrator",
    "RateController",
    "RecordBuildError",
    "RecordBuilder",
    "DataQuality",
    "StockRecord",
    "RunState",
    "StockStore",
    "StoreError",
    "Symbol",
]
