"""
amrr-replay: drive the AMRR controller from a recorded outcome trace

Reads JSON lines, one event per line:

    {"t": 0.25, "peer": "aa:bb:cc:dd:ee:01", "event": "data_ok"}
    {"t": 1.00, "peer": "aa:bb:cc:dd:ee:01", "event": "select_data", "width": 40}
    {"t": 1.00, "peer": "aa:bb:cc:dd:ee:01", "event": "select_rts"}

Outcome events are the Outcome values (data_ok, data_failed,
final_data_failed, rts_ok, rts_failed, final_rts_failed, rx_ok).
Peer events are add_peer (optional "standard", "width", "aggregation"),
remove_peer and reset. Each selection prints one JSON line with the
chosen TxVector. The trace's "t" values are used as the controller's
clock and must not decrease.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, IO, Iterable, Iterator, List, Optional

from .config import Config, LOG_LEVELS
from .controller import AmrrRateController, Outcome
from .errors import ConfigError
from .metrics import PrometheusExporter, RateTelemetry
from .rate_selector import RateChange
from .rates import modes_for_standard
from .station_manager import PeerCapabilities

SELECT_EVENTS = frozenset({'select_data', 'select_rts'})
PEER_EVENTS = frozenset({'add_peer', 'remove_peer', 'reset'})
OUTCOME_EVENTS = {o.value: o for o in Outcome}


class TraceError(ValueError):
    """A trace line could not be replayed."""

    def __init__(self, line_no: int, message: str):
        super().__init__(f"line {line_no}: {message}")
        self.line_no = line_no


def parse_trace(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """
    Parse and validate trace lines.

    Blank lines and lines starting with '#' are skipped.

    Raises:
        TraceError: malformed JSON, missing fields, unknown event, time
            going backwards or a bad width/aggregation/standard value
    """
    last_t = None
    for line_no, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError as e:
            raise TraceError(line_no, f"invalid JSON: {e}") from e
        if not isinstance(event, dict):
            raise TraceError(line_no, "event must be a JSON object")

        for key in ('t', 'peer', 'event'):
            if key not in event:
                raise TraceError(line_no, f"missing '{key}'")
        name = event['event']
        if name not in OUTCOME_EVENTS and name not in SELECT_EVENTS and name not in PEER_EVENTS:
            raise TraceError(line_no, f"unknown event '{name}'")
        try:
            t = float(event['t'])
        except (TypeError, ValueError) as e:
            raise TraceError(line_no, f"invalid time {event['t']!r}") from e
        if last_t is not None and t < last_t:
            raise TraceError(line_no, f"time went backwards ({t} < {last_t})")
        last_t = t

        width = event.get('width')
        if width is not None and (isinstance(width, bool) or not isinstance(width, int) or width <= 0):
            raise TraceError(line_no, f"invalid width {width!r}")
        if not isinstance(event.get('aggregation', False), bool):
            raise TraceError(line_no, f"invalid aggregation {event['aggregation']!r}")
        if not isinstance(event.get('standard', ''), str):
            raise TraceError(line_no, f"invalid standard {event['standard']!r}")

        event['t'] = t
        event['line'] = line_no
        yield event


class TraceClock:
    """Controller clock that follows the trace's timestamps."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TraceReplayer:
    """Applies parsed trace events to a controller and collects results."""

    def __init__(self, controller: AmrrRateController, out: IO[str],
                 clock: Optional[TraceClock] = None):
        self.controller = controller
        self.out = out
        self.clock = clock
        self.rate_changes: List[RateChange] = []
        self.selections = 0
        controller.add_rate_listener(self.rate_changes.append)

    def apply(self, event: Dict[str, Any]) -> None:
        name = event['event']
        peer = str(event['peer'])
        t = event['t']
        if self.clock is not None:
            self.clock.now = t

        if name in OUTCOME_EVENTS:
            self.controller.on_outcome(peer, OUTCOME_EVENTS[name], now=t)
        elif name == 'select_data':
            tx = self.controller.select_data_rate(peer, event.get('width'), now=t)
            self._emit(event, tx.to_dict())
        elif name == 'select_rts':
            tx = self.controller.select_rts_rate(peer, now=t)
            self._emit(event, tx.to_dict())
        elif name == 'add_peer':
            try:
                modes = modes_for_standard(event.get('standard', '80211a'))
            except KeyError as e:
                raise TraceError(event['line'], f"unknown standard {e}") from e
            try:
                self.controller.add_peer(peer, PeerCapabilities(
                    supported_modes=modes,
                    channel_width=event.get('width') or 20,
                    aggregation=event.get('aggregation', False),
                ))
            except ConfigError as e:
                raise TraceError(event['line'], e.message) from e
        elif name == 'remove_peer':
            self.controller.remove_peer(peer)
        elif name == 'reset':
            self.controller.reset(peer, now=t)

    def _emit(self, event: Dict[str, Any], tx: Dict[str, Any]) -> None:
        self.selections += 1
        state = self.controller.get_state(event['peer'], now=event['t'])
        record = {
            "t": event['t'],
            "peer": event['peer'],
            "event": event['event'],
            "rate_index": state.rate_index,
            "tx": tx,
        }
        self.out.write(json.dumps(record, sort_keys=True) + "\n")

    def summary(self) -> Dict[str, Any]:
        return {
            "selections": self.selections,
            "rate_changes": len(self.rate_changes),
            "peers": self.controller.get_all_status(),
        }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="amrr-replay",
        description="Replay a JSON-lines transmission outcome trace through the AMRR controller.",
    )
    parser.add_argument("trace", help="Trace file ('-' for stdin)")
    parser.add_argument("--update-period", dest="update_period", help="Seconds between rate decisions")
    parser.add_argument("--success-ratio", dest="success_ratio")
    parser.add_argument("--failure-ratio", dest="failure_ratio")
    parser.add_argument("--min-success-threshold", dest="min_success_threshold")
    parser.add_argument("--max-success-threshold", dest="max_success_threshold")
    parser.add_argument("--standard", default="80211a",
                        help="Default mode set for peers: 80211a, 80211b or 80211g")
    parser.add_argument("--width", type=int, default=20, help="Default channel width (MHz)")
    parser.add_argument("--non-erp-protection", action="store_true")
    parser.add_argument("--short-preamble", action="store_true")
    parser.add_argument("--prometheus-port", dest="prometheus_port",
                        help="Serve /metrics on this port while replaying")
    parser.add_argument("--log-level", dest="log_level", default="warn",
                        choices=["debug", "info", "warn", "error"])
    parser.add_argument("--summary", action="store_true",
                        help="Print a final JSON summary to stderr")
    return parser


def main(argv: Optional[List[str]] = None, stdout: IO[str] = None) -> int:
    args = build_parser().parse_args(argv)
    out = stdout or sys.stdout

    options = {k: v for k, v in vars(args).items() if v is not None}
    if args.prometheus_port is not None:
        options['enable_prometheus'] = 'true'

    try:
        config = Config.from_options(options)
        capabilities = PeerCapabilities(
            supported_modes=modes_for_standard(args.standard),
            channel_width=args.width,
        )
    except ConfigError as e:
        print(f"amrr-replay: {e.message}", file=sys.stderr)
        return 2
    except KeyError:
        print(f"amrr-replay: unknown standard '{args.standard}'", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=LOG_LEVELS[config.log_level],
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    clock = TraceClock()
    controller = AmrrRateController(
        config,
        default_capabilities=capabilities,
        use_non_erp_protection=args.non_erp_protection,
        short_preamble_enabled=args.short_preamble,
        clock=clock,
    )

    exporter = None
    if config.enable_prometheus:
        exporter = PrometheusExporter(port=config.prometheus_port)
        RateTelemetry(exporter).attach(controller)
        exporter.start_server()

    replayer = TraceReplayer(controller, out, clock)
    try:
        if args.trace == '-':
            for event in parse_trace(sys.stdin):
                replayer.apply(event)
        else:
            with open(args.trace, 'r', encoding='utf-8') as fh:
                for event in parse_trace(fh):
                    replayer.apply(event)
    except TraceError as e:
        print(f"amrr-replay: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"amrr-replay: cannot read trace: {e}", file=sys.stderr)
        return 1
    finally:
        if exporter is not None:
            exporter.stop_server()

    if args.summary:
        print(json.dumps(replayer.summary(), sort_keys=True), file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
