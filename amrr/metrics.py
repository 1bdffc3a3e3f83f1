"""
Prometheus metrics module for amrr-rate-control

Exposes the controller's decisions for monitoring.

Thread-safe metric storage and a background HTTP server serving the
Prometheus text format on /metrics, using only the standard library.

RateTelemetry subscribes to a controller's rate-change and reevaluation
notifications and keeps per-peer gauges and counters up to date.

All metric names are prefixed with 'amrr_'.
"""

import logging
import socket
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Dict, Optional, Any, TYPE_CHECKING

from .config import LOG_LEVELS

if TYPE_CHECKING:
    from .controller import AmrrRateController
    from .peer_state import PeerRateState
    from .rate_selector import RateChange
    from .reevaluation import ReevaluationResult


class MetricType:
    """Metric type constants."""
    GAUGE = "gauge"
    COUNTER = "counter"


class PrometheusExporter:
    """
    Minimal Prometheus exporter.

    Usage:
        exporter = PrometheusExporter(port=9810)
        exporter.start_server()
        exporter.set_gauge(MetricNames.PEER_DATA_RATE_BPS, 54000000,
                           {"peer": "aa:bb:cc:dd:ee:01"})
    """

    def __init__(self, port: int = 9810, logger: Optional[logging.Logger] = None):
        self.port = port
        self.logger = logger or logging.getLogger("amrr.metrics")

        self._lock = threading.Lock()
        # name -> {"type": ..., "help": ..., "values": {frozenset(labels): value}}
        self._metrics: Dict[str, Dict[str, Any]] = {}

        self._server: Optional[HTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._running = False

    def _log(self, message: str, level: str = 'info') -> None:
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), message)

    def _entry(self, name: str, metric_type: str, help_text: str) -> Dict[str, Any]:
        entry = self._metrics.get(name)
        if entry is None:
            entry = {
                "type": metric_type,
                "help": help_text or METRIC_HELP.get(name, ""),
                "values": {},
            }
            self._metrics[name] = entry
        return entry

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  help_text: str = "") -> None:
        """Set a gauge to value."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            self._entry(name, MetricType.GAUGE, help_text)["values"][label_key] = value

    def inc_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None,
                    help_text: str = "") -> None:
        """Increment a counter by value."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            values = self._entry(name, MetricType.COUNTER, help_text)["values"]
            values[label_key] = values.get(label_key, 0) + value

    def get_metric(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value for an exact label set, or None."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            if name in self._metrics:
                return self._metrics[name]["values"].get(label_key)
        return None

    def remove_labels(self, labels: Dict[str, str]) -> int:
        """
        Drop every series carrying all of the given labels.

        Used when a peer goes away so its series stop being exported.

        Returns:
            Number of series removed
        """
        wanted = set(labels.items())
        removed = 0
        with self._lock:
            for metric in self._metrics.values():
                for label_key in [k for k in metric["values"] if wanted <= set(k)]:
                    del metric["values"][label_key]
                    removed += 1
        return removed

    def format_prometheus(self) -> str:
        """All metrics in Prometheus text exposition format."""
        lines = []
        with self._lock:
            for name, metric in sorted(self._metrics.items()):
                if metric["help"]:
                    lines.append(f"# HELP {name} {metric['help']}")
                lines.append(f"# TYPE {name} {metric['type']}")
                for label_key, value in sorted(metric["values"].items(), key=lambda x: str(sorted(x[0]))):
                    if label_key:
                        label_part = ",".join(f'{k}="{v}"' for k, v in sorted(label_key))
                        lines.append(f"{name}{{{label_part}}} {value}")
                    else:
                        lines.append(f"{name} {value}")
                lines.append("")
        return "\n".join(lines)

    def _create_request_handler(self):
        exporter = self

        class MetricsHandler(BaseHTTPRequestHandler):
            """Serves /metrics."""

            def log_message(self, format, *args):
                # Silence per-request stderr output
                pass

            def do_GET(self):
                try:
                    if self.path not in ('/', '/metrics'):
                        self.send_response(404)
                        self.send_header('Content-Type', 'text/plain')
                        self.end_headers()
                        self.wfile.write(b'Not Found. Try /metrics')
                        return
                    content = exporter.format_prometheus().encode('utf-8')
                    self.send_response(200)
                    self.send_header('Content-Type', 'text/plain; version=0.0.4; charset=utf-8')
                    self.send_header('Content-Length', str(len(content)))
                    self.end_headers()
                    self.wfile.write(content)
                except (BrokenPipeError, ConnectionResetError):
                    # Client went away mid-response
                    pass

        return MetricsHandler

    def start_server(self) -> bool:
        """
        Serve /metrics from a daemon thread.

        Returns:
            True if the server is running, False if it could not start
        """
        if self._running:
            self._log("Prometheus server already running")
            return True

        try:
            self._server = HTTPServer(('0.0.0.0', self.port), self._create_request_handler())
            self._server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as e:
            self._log(
                f"Failed to start Prometheus server on port {self.port}: {e}. "
                "Continuing without metrics.",
                level='error'
            )
            return False

        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="amrr-prometheus-exporter"
        )
        self._server_thread.start()
        self._running = True
        self._log(f"Prometheus metrics server started on port {self.port}")
        return True

    def stop_server(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            self._running = False
            self._log("Prometheus metrics server stopped")

    def is_running(self) -> bool:
        return self._running


class MetricNames:
    """Metric names exported by amrr-rate-control."""

    # Per-peer gauges
    PEER_DATA_RATE_BPS = "amrr_peer_data_rate_bps"
    PEER_RATE_INDEX = "amrr_peer_rate_index"
    PEER_SUCCESS_THRESHOLD = "amrr_peer_success_threshold"
    PEER_RECOVERING = "amrr_peer_recovering"

    # Per-peer counters
    PEER_RATE_CHANGES_TOTAL = "amrr_peer_rate_changes_total"
    PEER_REEVALUATIONS_TOTAL = "amrr_peer_reevaluations_total"


METRIC_HELP = {
    MetricNames.PEER_DATA_RATE_BPS: "Data rate last selected for the peer in bit/s",
    MetricNames.PEER_RATE_INDEX: "Long-run rate index into the peer's supported modes",
    MetricNames.PEER_SUCCESS_THRESHOLD: "Successful periods required before the next promotion",
    MetricNames.PEER_RECOVERING: "1 if the current rate was reached through a promotion",
    MetricNames.PEER_RATE_CHANGES_TOTAL: "Number of selected data rate changes",
    MetricNames.PEER_REEVALUATIONS_TOTAL: "Reevaluations run, by outcome",
}


class RateTelemetry:
    """Feeds a PrometheusExporter from a controller's notifications."""

    def __init__(self, exporter: PrometheusExporter):
        self.exporter = exporter

    def attach(self, controller: 'AmrrRateController') -> None:
        controller.add_rate_listener(self.on_rate_change)
        controller.add_reevaluation_listener(self.on_reevaluation)
        controller.stations.on_remove(self.on_peer_removed)

    def detach(self, controller: 'AmrrRateController') -> None:
        controller.remove_rate_listener(self.on_rate_change)
        controller.remove_reevaluation_listener(self.on_reevaluation)
        controller.stations.remove_on_remove(self.on_peer_removed)

    def on_rate_change(self, change: 'RateChange') -> None:
        labels = {"peer": change.peer}
        self.exporter.set_gauge(MetricNames.PEER_DATA_RATE_BPS, change.new_rate, labels)
        self.exporter.inc_counter(MetricNames.PEER_RATE_CHANGES_TOTAL, 1, labels)

    def on_reevaluation(self, peer: str, result: 'ReevaluationResult',
                        state: 'PeerRateState') -> None:
        labels = {"peer": peer}
        self.exporter.set_gauge(MetricNames.PEER_RATE_INDEX, state.rate_index, labels)
        self.exporter.set_gauge(MetricNames.PEER_SUCCESS_THRESHOLD, state.success_threshold, labels)
        self.exporter.set_gauge(MetricNames.PEER_RECOVERING, 1 if state.recovering else 0, labels)
        self.exporter.inc_counter(
            MetricNames.PEER_REEVALUATIONS_TOTAL, 1, {"peer": peer, "outcome": result.outcome}
        )

    def on_peer_removed(self, peer: str) -> None:
        self.exporter.remove_labels({"peer": peer})
