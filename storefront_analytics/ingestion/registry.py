"""
Connector Registry

Maps source types to connector factories. Platform clients live outside
this package and register themselves here; the scheduler builds the
connectors for the enabled sources from the registry.
"""

from typing import Callable, Dict, Iterable, List

import structlog

from .interfaces import SourceConnector

logger = structlog.get_logger(__name__)

ConnectorFactory = Callable[..., SourceConnector]

_factories: Dict[str, ConnectorFactory] = {}


def register_connector(source_type: str, factory: ConnectorFactory) -> None:
    """
    Register the factory that builds the connector for ``source_type``.

    The factory is called with the application Settings. Registering a
    source twice replaces the earlier factory.
    """
    if source_type in _factories:
        logger.warning("Replacing registered connector", source_type=source_type)
    _factories[source_type] = factory


def unregister_connector(source_type: str) -> None:
    _factories.pop(source_type, None)


def registered_sources() -> List[str]:
    return sorted(_factories)


def build_connectors(settings, sources: Iterable[str]) -> Dict[str, SourceConnector]:
    """
    Build connectors for the given sources.

    Sources without a registered factory are left out; the orchestrator
    reports them as not initialized when their run starts.
    """
    connectors: Dict[str, SourceConnector] = {}
    for source_type in sources:
        factory = _factories.get(source_type)
        if factory is None:
            logger.warning("No connector registered", source_type=source_type)
            continue
        connectors[source_type] = factory(settings)
    return connectors
