"""
amrr-rate-control package

Adaptive Multi Rate Retry (AMRR) transmit-rate control for wireless links:
- config: Configuration and validation
- rates: Transmit modes, TxVector and legacy 802.11 mode tables
- peer_state: Per-peer adaptation state
- station_manager: Registry of peer state and capabilities
- outcome_recorder: Transmission report counters
- reevaluation: Periodic promote / demote decision
- rate_selector: Data and RTS TxVector selection
- controller: RateController interface and the AMRR implementation
- metrics: Prometheus exporter and rate telemetry
"""

from .config import Config
from .errors import ConfigError, UnsupportedCapabilityError
from .rates import RateMode, ModulationClass, Preamble, TxVector, modes_for_standard
from .peer_state import PeerRateState
from .station_manager import StationManager, PeerCapabilities
from .outcome_recorder import OutcomeRecorder
from .reevaluation import ReevaluationEngine, ReevaluationResult, ReevaluationOutcome
from .rate_selector import RateSelector, RateChange
from .controller import RateController, AmrrRateController, Outcome
from .metrics import PrometheusExporter, RateTelemetry, MetricNames

__version__ = "1.0.0"

__all__ = [
    'Config',
    'ConfigError',
    'UnsupportedCapabilityError',
    'RateMode',
    'ModulationClass',
    'Preamble',
    'TxVector',
    'modes_for_standard',
    'PeerRateState',
    'StationManager',
    'PeerCapabilities',
    'OutcomeRecorder',
    'ReevaluationEngine',
    'ReevaluationResult',
    'ReevaluationOutcome',
    'RateSelector',
    'RateChange',
    'RateController',
    'AmrrRateController',
    'Outcome',
    'PrometheusExporter',
    'RateTelemetry',
    'MetricNames',
]
