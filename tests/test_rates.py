"""
Tests for the rate vocabulary: mode tables, data rates, preambles.
"""

import pytest

from amrr.peer_state import PeerRateState
from amrr.rates import (
    ModulationClass,
    Preamble,
    RateMode,
    TxVector,
    modes_for_standard,
    non_erp_subset,
    preamble_for,
)


class TestModeTables:

    def test_80211a(self):
        """802.11a is the eight OFDM rates."""
        modes = modes_for_standard("80211a")
        assert [m.rate_bps // 1_000_000 for m in modes] == [6, 9, 12, 18, 24, 36, 48, 54]
        assert all(m.modulation_class == ModulationClass.OFDM for m in modes)

    def test_80211b(self):
        """802.11b is the four DSSS and HR-DSSS rates."""
        modes = modes_for_standard("802.11b")
        assert [m.name for m in modes] == [
            "DsssRate1Mbps", "DsssRate2Mbps", "DsssRate5_5Mbps", "DsssRate11Mbps"
        ]

    def test_80211g_is_ascending_mix(self):
        """802.11g mixes DSSS and ERP-OFDM in ascending order."""
        modes = modes_for_standard("80211g")
        rates = [m.rate_bps for m in modes]
        assert rates == sorted(rates)
        assert len(modes) == 12
        assert modes[0].modulation_class == ModulationClass.DSSS
        assert {m.modulation_class for m in modes} == {
            ModulationClass.DSSS, ModulationClass.HR_DSSS, ModulationClass.ERP_OFDM
        }

    def test_unknown_standard(self):
        """Unknown standards raise KeyError."""
        with pytest.raises(KeyError):
            modes_for_standard("80211ac")

    def test_tables_are_copies(self):
        """Callers get a copy of the mode table."""
        modes = modes_for_standard("80211a")
        modes.clear()
        assert len(modes_for_standard("80211a")) == 8

    def test_non_erp_subset(self):
        """The non-ERP subset keeps only DSSS and HR-DSSS modes."""
        subset = non_erp_subset(modes_for_standard("80211g"))
        assert [m.rate_bps for m in subset] == [1_000_000, 2_000_000, 5_500_000, 11_000_000]


class TestDataRate:

    def test_ofdm_scales_with_narrow_width(self):
        """OFDM rates scale down on 10 and 5 MHz channels."""
        mode = RateMode("OfdmRate6Mbps", ModulationClass.OFDM, 6_000_000)
        assert mode.data_rate(20) == 6_000_000
        assert mode.data_rate(10) == 3_000_000
        assert mode.data_rate(5) == 1_500_000

    def test_ofdm_never_exceeds_20mhz_rate(self):
        """OFDM rates do not grow beyond 20 MHz."""
        mode = RateMode("ErpOfdmRate54Mbps", ModulationClass.ERP_OFDM, 54_000_000)
        assert mode.data_rate(22) == 54_000_000
        assert mode.data_rate(40) == 54_000_000

    def test_dsss_independent_of_width(self):
        """DSSS rates ignore the channel width."""
        mode = RateMode("DsssRate11Mbps", ModulationClass.HR_DSSS, 11_000_000)
        assert mode.data_rate(22) == 11_000_000
        assert mode.data_rate(20) == 11_000_000


class TestPreamble:

    @pytest.mark.parametrize("cls", [
        ModulationClass.DSSS, ModulationClass.HR_DSSS,
        ModulationClass.OFDM, ModulationClass.ERP_OFDM,
    ])
    def test_legacy_classes_follow_flag(self, cls):
        """Legacy modes follow the short-preamble flag."""
        assert preamble_for(cls, short_preamble=False) == Preamble.LONG
        assert preamble_for(cls, short_preamble=True) == Preamble.SHORT

    def test_high_throughput_classes(self):
        """HT, VHT and HE get their own preambles."""
        assert preamble_for(ModulationClass.HT, True) == Preamble.HT_MF
        assert preamble_for(ModulationClass.VHT, False) == Preamble.VHT_SU
        assert preamble_for(ModulationClass.HE, False) == Preamble.HE_SU


class TestSerialization:

    def test_tx_vector_to_dict(self):
        """TxVector serializes with the width-adjusted rate."""
        mode = modes_for_standard("80211a")[2]
        tx = TxVector(mode=mode, tx_power_level=1, preamble=Preamble.LONG,
                      channel_width=10, aggregation=False)
        d = tx.to_dict()
        assert d["mode"] == "OfdmRate12Mbps"
        assert d["data_rate_bps"] == 6_000_000
        assert d["guard_interval_ns"] == 800
        assert d["nss"] == 1

    def test_fresh_peer_state(self):
        """A fresh state starts at the lowest rate with the first deadline."""
        state = PeerRateState.fresh(min_success_threshold=2, update_period=0.5, now=10.0)
        d = state.to_dict()
        assert d["rate_index"] == 0
        assert d["success_threshold"] == 2
        assert d["next_reevaluation_deadline"] == 10.5
        assert d["recovering"] is False
        assert state.window_total == 0
