"""
Rate vocabulary for amrr-rate-control

Defines the transmit modes a peer may support, the descriptor returned
to the frame-transmission path (TxVector), and the standard legacy
802.11 mode tables.

The controller never computes which modes a peer supports; callers hand
it an ordered list (ascending by data rate). These tables are provided
so callers and tests do not have to build one by hand.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Any, Sequence


# Legacy DSSS channel width; kept as-is by width normalization
DSSS_CHANNEL_WIDTH_MHZ = 22
# Widest channel legacy modes are transmitted on
MAX_LEGACY_WIDTH_MHZ = 20

DEFAULT_GUARD_INTERVAL_NS = 800
DEFAULT_NSS = 1


class ModulationClass(Enum):
    """Modulation class of a transmit mode."""
    DSSS = "dsss"
    HR_DSSS = "hr_dsss"
    ERP_OFDM = "erp_ofdm"
    OFDM = "ofdm"
    HT = "ht"
    VHT = "vht"
    HE = "he"


# Classes this controller is able to drive
LEGACY_MODULATION_CLASSES = frozenset({
    ModulationClass.DSSS,
    ModulationClass.HR_DSSS,
    ModulationClass.ERP_OFDM,
    ModulationClass.OFDM,
})


class Preamble(Enum):
    """PHY preamble used for a transmission."""
    LONG = "long"
    SHORT = "short"
    HT_MF = "ht_mf"
    VHT_SU = "vht_su"
    HE_SU = "he_su"


@dataclass(frozen=True)
class RateMode:
    """
    A single transmit mode.

    Attributes:
        name: Unique mode name (e.g. "OfdmRate6Mbps")
        modulation_class: Modulation family
        rate_bps: Data rate in bit/s at the mode's reference width
                  (22 MHz for DSSS/HR-DSSS, 20 MHz for OFDM/ERP-OFDM)
    """
    name: str
    modulation_class: ModulationClass
    rate_bps: int

    def data_rate(self, channel_width: int) -> int:
        """
        Data rate in bit/s when transmitted on channel_width MHz.

        DSSS rates do not depend on width. OFDM rates scale with the
        width for the 5 and 10 MHz half/quarter-clocked variants.
        """
        if self.modulation_class in (ModulationClass.DSSS, ModulationClass.HR_DSSS):
            return self.rate_bps
        width = min(channel_width, MAX_LEGACY_WIDTH_MHZ)
        if width <= 0:
            return 0
        return self.rate_bps * width // MAX_LEGACY_WIDTH_MHZ

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "modulation_class": self.modulation_class.value,
            "rate_bps": self.rate_bps,
        }


@dataclass(frozen=True)
class TxVector:
    """
    Rate descriptor handed to the frame-transmission path.

    Attributes:
        mode: Selected transmit mode
        tx_power_level: Transmit power level (station default)
        preamble: Preamble derived from modulation class and short-preamble flag
        guard_interval_ns: Guard interval (always 800 ns for legacy modes)
        nss: Number of spatial streams (always 1)
        channel_width: Normalized channel width in MHz
        aggregation: Whether frame aggregation is allowed for the peer
    """
    mode: RateMode
    tx_power_level: int
    preamble: Preamble
    channel_width: int
    aggregation: bool = False
    guard_interval_ns: int = DEFAULT_GUARD_INTERVAL_NS
    nss: int = DEFAULT_NSS

    @property
    def data_rate(self) -> int:
        return self.mode.data_rate(self.channel_width)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.name,
            "data_rate_bps": self.data_rate,
            "tx_power_level": self.tx_power_level,
            "preamble": self.preamble.value,
            "guard_interval_ns": self.guard_interval_ns,
            "nss": self.nss,
            "channel_width": self.channel_width,
            "aggregation": self.aggregation,
        }


def normalize_channel_width(width: int) -> int:
    """
    Clamp a requested width to what legacy modes are sent on.

    Anything wider than 20 MHz becomes 20 MHz, except the 22 MHz DSSS
    width which passes through unchanged.
    """
    if width > MAX_LEGACY_WIDTH_MHZ and width != DSSS_CHANNEL_WIDTH_MHZ:
        return MAX_LEGACY_WIDTH_MHZ
    return width


def preamble_for(modulation_class: ModulationClass, short_preamble: bool) -> Preamble:
    """Pick the preamble for a mode's modulation class."""
    if modulation_class == ModulationClass.HE:
        return Preamble.HE_SU
    if modulation_class == ModulationClass.VHT:
        return Preamble.VHT_SU
    if modulation_class == ModulationClass.HT:
        return Preamble.HT_MF
    if short_preamble:
        return Preamble.SHORT
    return Preamble.LONG


def is_legacy(mode: RateMode) -> bool:
    return mode.modulation_class in LEGACY_MODULATION_CLASSES


def non_erp_subset(modes: Sequence[RateMode]) -> List[RateMode]:
    """Modes usable while non-ERP protection is active (DSSS / HR-DSSS only)."""
    return [
        m for m in modes
        if m.modulation_class in (ModulationClass.DSSS, ModulationClass.HR_DSSS)
    ]


# =============================================================================
# Standard legacy mode tables
# =============================================================================

def _mode(prefix: str, cls: ModulationClass, mbps: float) -> RateMode:
    label = f"{mbps:g}".replace('.', '_')
    return RateMode(f"{prefix}Rate{label}Mbps", cls, int(mbps * 1_000_000))


DSSS_MODES: List[RateMode] = [
    _mode("Dsss", ModulationClass.DSSS, 1),
    _mode("Dsss", ModulationClass.DSSS, 2),
    _mode("Dsss", ModulationClass.HR_DSSS, 5.5),
    _mode("Dsss", ModulationClass.HR_DSSS, 11),
]

OFDM_MODES: List[RateMode] = [
    _mode("Ofdm", ModulationClass.OFDM, mbps)
    for mbps in (6, 9, 12, 18, 24, 36, 48, 54)
]

ERP_OFDM_MODES: List[RateMode] = [
    _mode("ErpOfdm", ModulationClass.ERP_OFDM, mbps)
    for mbps in (6, 9, 12, 18, 24, 36, 48, 54)
]

STANDARD_MODES: Dict[str, List[RateMode]] = {
    "80211a": list(OFDM_MODES),
    "80211b": list(DSSS_MODES),
    "80211g": sorted(DSSS_MODES + ERP_OFDM_MODES, key=lambda m: m.rate_bps),
}


def modes_for_standard(standard: str) -> List[RateMode]:
    """
    Ordered (ascending) mode list for a legacy PHY standard.

    Raises:
        KeyError: if the standard is not one of 80211a / 80211b / 80211g
    """
    return list(STANDARD_MODES[standard.lower().replace('.', '').replace('-', '')])
