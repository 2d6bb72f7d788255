"""
Metrics instrumentation wrapper around prometheus_client.
"""
import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry for CaseFile.

    Provides typed access to all application metrics.
    """

    def __init__(self, registry=None):
        """Initialize metrics registry (default prometheus registry unless given)."""
        self._registry = registry
        self._setup_metrics()

    def _registry_kwargs(self):
        if self._registry is None:
            return {}
        return {'registry': self._registry}

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [], **self._registry_kwargs())

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets, **self._registry_kwargs())
        return Histogram(name, description, labels or [], **self._registry_kwargs())

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # Import Metrics
        # ===================================================================
        self.import_runs_total = self._create_counter(
            'import_runs_total',
            'Import pipeline runs',
            ['source', 'result']  # source: workbook|csv|lab_report
        )

        self.import_rows_total = self._create_counter(
            'import_rows_total',
            'Rows processed by the import pipeline',
            ['kind', 'result']  # result: imported|skipped
        )

        self.import_diagnostics_total = self._create_counter(
            'import_diagnostics_total',
            'Non-fatal import diagnostics',
            ['kind']
        )

        self.import_run_duration_seconds = self._create_histogram(
            'import_run_duration_seconds',
            'Duration of an import run including commit',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )


# Global metrics instance
metrics = MetricsRegistry()
