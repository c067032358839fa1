"""
Ingestion Module

Connector and record store contracts, the connector registry and the ETL
orchestrator.
"""
from .interfaces import RawRecord, RecordStore, SourceConnector
from .orchestrator import ETLOrchestrator
from .registry import build_connectors, register_connector, registered_sources, unregister_connector
from .results import BatchResult, ETLRunLog, LoadFailure, PipelineStage, RunStatus

__all__ = [
    "RawRecord",
    "RecordStore",
    "SourceConnector",
    "ETLOrchestrator",
    "build_connectors",
    "register_connector",
    "registered_sources",
    "unregister_connector",
    "BatchResult",
    "ETLRunLog",
    "LoadFailure",
    "PipelineStage",
    "RunStatus",
]
