"""
ETL Orchestrator

Runs the incremental pipeline for each storefront source:

    Idle → Connecting → DeterminingWatermark → Extracting → Transforming
         → Loading → ComputingMetrics → Success | Failed

Sources run one after another. A failing source is recorded in its run
log and never stops the sources after it. There is no retry loop here;
the scheduler retries by starting a fresh run.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import structlog

from storefront_analytics.analytics import CustomerAnalytics, DateLike, as_utc_datetime
from storefront_analytics.config import Settings
from storefront_analytics.errors import (
    ExtractionError,
    LoadError,
    MetricsError,
    NormalizationError,
    PipelineError,
    SourceConnectionError,
)
from storefront_analytics.transformation import Customer, Order, OrderItem, Product, RecordNormalizer
from .interfaces import RawRecord, RecordStore, SourceConnector
from .results import BatchResult, ETLRunLog, LoadFailure, PipelineStage, RunStatus

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class ExtractedData:
    """Raw records fetched from one source"""
    customers: List[RawRecord] = field(default_factory=list)
    products: List[RawRecord] = field(default_factory=list)
    orders: List[RawRecord] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.customers) + len(self.products) + len(self.orders)


@dataclass
class TransformedData:
    """Canonical entities of one run; orders carry their line items"""
    customers: List[Customer] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.customers) + len(self.products) + len(self.orders)

    @property
    def order_items(self) -> List[OrderItem]:
        return [item for order in self.orders for item in order.line_items]


@dataclass
class LoadResults:
    """Per-entity load outcome of one run"""
    customers: BatchResult = field(default_factory=BatchResult)
    products: BatchResult = field(default_factory=BatchResult)
    orders: BatchResult = field(default_factory=BatchResult)
    order_items: BatchResult = field(default_factory=BatchResult)

    @property
    def total_loaded(self) -> int:
        return (
            len(self.customers.inserted)
            + len(self.products.inserted)
            + len(self.orders.inserted)
            + len(self.order_items.inserted)
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "customers": self.customers.summary(),
            "products": self.products.summary(),
            "orders": self.orders.summary(),
            "order_items": self.order_items.summary(),
            "total_loaded": self.total_loaded,
        }


class ETLOrchestrator:
    """
    Sequences extraction, normalization, loading and analytics per source.

    Example:
        orchestrator = ETLOrchestrator(
            connectors={"shopify": shopify_connector},
            store=repository,
        )
        results = await orchestrator.run_all()
    """

    def __init__(
        self,
        connectors: Mapping[str, SourceConnector],
        store: RecordStore,
        *,
        pipeline_name: str = "main_etl",
        enabled_sources: Optional[Iterable[str]] = None,
        normalizer: Optional[RecordNormalizer] = None,
        analytics: Optional[CustomerAnalytics] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.connectors = dict(connectors)
        self.store = store
        self.pipeline_name = pipeline_name
        self.enabled_sources = (
            list(enabled_sources) if enabled_sources is not None else list(self.connectors)
        )
        self.normalizer = normalizer or RecordNormalizer()
        self.analytics = analytics or CustomerAnalytics()
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        connectors: Mapping[str, SourceConnector],
        store: RecordStore,
        **kwargs,
    ) -> "ETLOrchestrator":
        """Build an orchestrator from application Settings"""
        return cls(
            connectors,
            store,
            pipeline_name=settings.pipeline.name,
            enabled_sources=settings.enabled_sources,
            analytics=CustomerAnalytics(top_products_limit=settings.pipeline.top_products_limit),
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run_all(self, sources: Optional[Iterable[str]] = None) -> Dict[str, ETLRunLog]:
        """
        Run the pipeline once per source, sequentially.

        Args:
            sources: Source types to run; defaults to the enabled sources

        Returns:
            Run log per source type
        """
        sources = list(sources) if sources is not None else list(self.enabled_sources)
        started = self.clock()
        logger.info("Starting ETL pipeline run", pipeline=self.pipeline_name, sources=sources)

        results: Dict[str, ETLRunLog] = {}
        for source_type in sources:
            results[source_type] = await self.run_for_source(source_type)

        succeeded = sum(1 for r in results.values() if r.success)
        logger.info(
            f"ETL pipeline completed: {succeeded} succeeded, {len(results) - succeeded} failed",
            pipeline=self.pipeline_name,
            duration_seconds=(self.clock() - started).total_seconds(),
        )
        return results

    async def run_for_source(
        self,
        source_type: str,
        calculation_date: Optional[DateLike] = None,
    ) -> ETLRunLog:
        """
        Run one full pipeline pass for a single source.

        Stage-fatal errors are caught here and recorded on the returned run
        log; they never propagate to the caller.

        Args:
            source_type: Source to run (e.g. "shopify")
            calculation_date: Date for metric calculation; defaults to now.
                Aware datetimes are converted to UTC; a date means its midnight

        Returns:
            The persisted run log
        """
        started_at = self.clock()
        calculation_date = as_utc_datetime(calculation_date or started_at)
        run_log = ETLRunLog(
            pipeline_name=self.pipeline_name,
            source_type=source_type,
            started_at=started_at,
        )
        load_results: Optional[LoadResults] = None
        stage = PipelineStage.IDLE

        structlog.contextvars.bind_contextvars(source_type=source_type, pipeline=self.pipeline_name)
        try:
            stage = self._transition(stage, PipelineStage.CONNECTING)
            connector = await self._connect(source_type)

            stage = self._transition(stage, PipelineStage.DETERMINING_WATERMARK)
            since = await self._determine_watermark(source_type)

            stage = self._transition(stage, PipelineStage.EXTRACTING)
            extracted = await self._extract(connector, since)
            run_log.records_extracted = extracted.count

            stage = self._transition(stage, PipelineStage.TRANSFORMING)
            transformed = self._transform(extracted, source_type)
            run_log.records_transformed = transformed.count

            stage = self._transition(stage, PipelineStage.LOADING)
            load_results = await self._load(transformed, source_type)
            run_log.records_loaded = load_results.total_loaded

            stage = self._transition(stage, PipelineStage.COMPUTING_METRICS)
            metrics_summary = await self._compute_metrics(
                source_type, calculation_date, transformed.products
            )

            run_log.status = RunStatus.SUCCESS
            run_log.metadata = {
                **load_results.summary(),
                "since": since.isoformat() if since else None,
                "metrics": metrics_summary,
            }
            stage = self._transition(stage, PipelineStage.SUCCESS)

        except PipelineError as e:
            self._mark_failed(run_log, stage, e.error_kind, e, load_results)
        except Exception as e:
            logger.exception("Unexpected error in ETL run", stage=stage.value)
            self._mark_failed(run_log, stage, type(e).__name__, e, load_results)
        finally:
            run_log.completed_at = self.clock()
            run_log.duration_seconds = (run_log.completed_at - run_log.started_at).total_seconds()
            await self._persist_run_log(run_log)
            structlog.contextvars.unbind_contextvars("source_type", "pipeline")

        return run_log

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    @staticmethod
    def _transition(current: PipelineStage, target: PipelineStage) -> PipelineStage:
        logger.info("ETL stage transition", from_stage=current.value, to_stage=target.value)
        return target

    def _mark_failed(
        self,
        run_log: ETLRunLog,
        stage: PipelineStage,
        error_kind: str,
        error: Exception,
        load_results: Optional[LoadResults],
    ) -> None:
        run_log.status = RunStatus.FAILED
        run_log.error_message = str(error)
        run_log.metadata = {
            **(load_results.summary() if load_results else {}),
            "error_kind": error_kind,
            "failed_stage": stage.value,
        }
        self._transition(stage, PipelineStage.FAILED)
        logger.error("ETL run failed", error_kind=error_kind, stage=stage.value, error=str(error))

    async def _connect(self, source_type: str) -> SourceConnector:
        connector = self.connectors.get(source_type)
        if connector is None:
            raise SourceConnectionError(f"Connector for {source_type} not initialized")

        try:
            connected = await connector.test_connection()
        except Exception as e:
            raise SourceConnectionError(f"Failed to connect to {source_type}: {e}") from e

        if not connected:
            raise SourceConnectionError(f"Failed to connect to {source_type}")
        return connector

    async def _determine_watermark(self, source_type: str) -> Optional[datetime]:
        """Completion time of the last successful run, or None for a full extraction"""
        try:
            last_run = await self.store.get_last_successful_run(self.pipeline_name, source_type)
        except Exception as e:
            raise ExtractionError(f"Could not determine watermark for {source_type}: {e}") from e

        since = last_run.completed_at if last_run else None
        logger.info("Watermark determined", since=since.isoformat() if since else None)
        return since

    async def _extract(self, connector: SourceConnector, since: Optional[datetime]) -> ExtractedData:
        data = ExtractedData()
        try:
            data.customers = list(await connector.fetch_customers(since))
            logger.info(f"Extracted {len(data.customers)} customers")

            data.products = list(await connector.fetch_products(since))
            logger.info(f"Extracted {len(data.products)} products")

            data.orders = list(await connector.fetch_orders(since))
            logger.info(f"Extracted {len(data.orders)} orders")
        except Exception as e:
            raise ExtractionError(f"Data extraction failed: {e}") from e

        return data

    def _normalize_all(
        self,
        records: List[RawRecord],
        normalize: Callable[[Any, str], Any],
        source_type: str,
        entity_type: str,
    ) -> list:
        entities = []
        for record in records:
            try:
                entities.append(normalize(record, source_type))
            except NormalizationError:
                raise
            except Exception as e:
                raise NormalizationError(
                    f"Could not normalize {entity_type}: {e}",
                    entity_type=entity_type,
                    raw_record=record,
                ) from e
        return entities

    def _transform(self, data: ExtractedData, source_type: str) -> TransformedData:
        """Normalize every record; the first bad record aborts the run"""
        try:
            transformed = TransformedData(
                customers=self._normalize_all(
                    data.customers, self.normalizer.normalize_customer, source_type, "customer"
                ),
                products=self._normalize_all(
                    data.products, self.normalizer.normalize_product, source_type, "product"
                ),
                orders=self._normalize_all(
                    data.orders, self.normalizer.normalize_order, source_type, "order"
                ),
            )
        except NormalizationError as e:
            logger.error(
                "Record normalization failed",
                entity_type=e.entity_type,
                source_id=e.raw_record.get("id") if isinstance(e.raw_record, Mapping) else None,
                error=str(e),
            )
            raise

        logger.info(
            "Data transformation completed",
            customers=len(transformed.customers),
            products=len(transformed.products),
            orders=len(transformed.orders),
            order_items=len(transformed.order_items),
        )
        return transformed

    async def _load_batch(
        self,
        entities: List[Any],
        upsert: Callable[[Any], Awaitable[int]],
        entity_type: str,
    ) -> BatchResult:
        result = BatchResult()
        for entity in entities:
            try:
                entity_id = await upsert(entity)
            except Exception as e:
                logger.warning(
                    "Failed to load entity",
                    entity_type=entity_type,
                    source_id=entity.source_id,
                    error=str(e),
                )
                result.failed.append(LoadFailure(entity=entity, error=str(e)))
            else:
                result.inserted.append(entity.model_copy(update={"id": entity_id}))
        return result

    async def _load_order(self, order: Order, source_type: str, results: LoadResults) -> None:
        try:
            customer_id = None
            if order.email:
                customer_id = await self.store.find_customer_id(order.email, source_type)
            order_id = await self.store.upsert_order(order, customer_id)
        except Exception as e:
            logger.warning("Failed to load order", source_id=order.source_id, error=str(e))
            results.orders.failed.append(LoadFailure(entity=order, error=str(e)))
            results.order_items.fail_all(order.line_items, f"Order {order.source_id} not loaded")
            return

        results.orders.inserted.append(
            order.model_copy(update={"id": order_id, "customer_id": customer_id or order.customer_id})
        )
        if not order.line_items:
            return

        try:
            results.order_items.extend(await self.store.insert_order_items(order.line_items, order_id))
        except Exception as e:
            logger.warning("Failed to load order items", source_id=order.source_id, error=str(e))
            results.order_items.fail_all(order.line_items, str(e))

    async def _load(self, data: TransformedData, source_type: str) -> LoadResults:
        results = LoadResults()
        try:
            logger.info("Loading customers")
            results.customers = await self._load_batch(
                data.customers, self.store.upsert_customer, "customer"
            )

            logger.info("Loading products")
            results.products = await self._load_batch(
                data.products, self.store.upsert_product, "product"
            )

            logger.info("Loading orders")
            for order in data.orders:
                await self._load_order(order, source_type, results)

            await self.store.update_customer_purchase_dates(source_type)
        except Exception as e:
            raise LoadError(f"Data loading failed for {source_type}: {e}") from e

        logger.info(
            "Data loading completed",
            total_loaded=results.total_loaded,
            failed=sum(
                len(batch.failed)
                for batch in (results.customers, results.products, results.orders, results.order_items)
            ),
        )
        return results

    async def _compute_metrics(
        self,
        source_type: str,
        calculation_date: datetime,
        products: List[Product],
    ) -> Dict[str, Any]:
        """Recompute customer metrics and the daily aggregate from stored data"""
        try:
            customers_computed = 0
            for customer, orders in await self.store.query_customers_with_orders(source_type):
                if not orders:
                    continue
                metrics = self.analytics.calculate_customer_metrics(customer, orders, calculation_date)
                await self.store.upsert_customer_metrics(metrics)
                customers_computed += 1

            metric_date: date = calculation_date.date()
            day_orders = await self.store.query_orders_for_date(source_type, metric_date)
            daily = self.analytics.calculate_daily_metrics(day_orders, products, calculation_date)
            daily.source_type = source_type
            await self.store.upsert_daily_metrics(daily)
        except Exception as e:
            raise MetricsError(f"Metrics calculation failed for {source_type}: {e}") from e

        logger.info(
            "Metrics calculation completed",
            customers=customers_computed,
            daily_orders=daily.total_orders,
        )
        return {
            "calculation_date": metric_date.isoformat(),
            "customer_metrics": customers_computed,
            "daily_orders": daily.total_orders,
        }

    async def _persist_run_log(self, run_log: ETLRunLog) -> None:
        try:
            run_log.id = await self.store.log_run(run_log)
        except Exception:
            logger.exception("Failed to persist ETL run log", status=run_log.status.value)
