from typing import Dict, Optional
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    start_http_server
)
import logging


class MetricsService:
    """Prometheus counters for the scan, validate and execute pipeline."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, port: Optional[int] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry if registry is not None else REGISTRY
        self.port = port

        self._init_metrics()

        if port is not None:
            start_http_server(port, registry=self.registry)
            self.logger.info(f"Metrics server started on port {port}")

    def _init_metrics(self):
        """Initialize Prometheus metrics."""
        # Opportunity metrics
        self.opportunities_found = Counter(
            'arbitrage_opportunities_found_total',
            'Total number of arbitrage opportunities found',
            ['layout'],
            registry=self.registry
        )
        self.opportunities_rejected = Counter(
            'arbitrage_opportunities_rejected_total',
            'Opportunities rejected during validation',
            ['reason'],
            registry=self.registry
        )
        self.opportunities_validated = Counter(
            'arbitrage_opportunities_validated_total',
            'Total number of validated opportunities',
            registry=self.registry
        )
        self.opportunities_executed = Counter(
            'arbitrage_opportunities_executed_total',
            'Total number of executed opportunities',
            registry=self.registry
        )
        self.executions_failed = Counter(
            'arbitrage_executions_failed_total',
            'Failed executions by failure kind',
            ['kind'],
            registry=self.registry
        )

        # Profit metrics
        self.total_profit = Counter(
            'arbitrage_profit_usd_total',
            'Total profit in USD',
            registry=self.registry
        )
        self.profit_per_trade = Histogram(
            'arbitrage_profit_per_trade_usd',
            'Profit per trade in USD',
            buckets=[10, 50, 100, 500, 1000, 5000],
            registry=self.registry
        )

        # Gas metrics
        self.gas_price = Gauge(
            'arbitrage_gas_price_gwei',
            'Current gas price in Gwei',
            registry=self.registry
        )

        # Performance metrics
        self.scan_time = Histogram(
            'arbitrage_scan_time_seconds',
            'Time taken by one scan tick',
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
            registry=self.registry
        )

    def record_opportunity_found(self, layout: str = "plain", count: int = 1):
        self.opportunities_found.labels(layout=layout).inc(count)

    def record_opportunity_rejected(self, reason: str):
        self.opportunities_rejected.labels(reason=reason).inc()

    def record_opportunity_validated(self):
        self.opportunities_validated.inc()

    def record_opportunity_executed(self, profit_usd: float):
        """Record a successful execution."""
        self.opportunities_executed.inc()
        if profit_usd > 0:
            self.total_profit.inc(profit_usd)
        self.profit_per_trade.observe(profit_usd)

    def record_execution_failed(self, kind: str):
        self.executions_failed.labels(kind=kind).inc()

    def update_gas_price(self, price_gwei: float):
        self.gas_price.set(price_gwei)

    def record_scan_time(self, seconds: float):
        self.scan_time.observe(seconds)

    def _sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.registry.get_sample_value(name, labels) or 0.0

    def get_current_metrics(self) -> Dict:
        """Get current metrics values."""
        return {
            "opportunities": {
                "found": sum(
                    self._sample('arbitrage_opportunities_found_total', {"layout": layout})
                    for layout in ("plain", "triangle")
                ),
                "validated": self._sample('arbitrage_opportunities_validated_total'),
                "executed": self._sample('arbitrage_opportunities_executed_total')
            },
            "profit": {
                "total": self._sample('arbitrage_profit_usd_total')
            },
            "gas": {
                "price": self._sample('arbitrage_gas_price_gwei')
            }
        }
