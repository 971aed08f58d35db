"""Tests for cohortveg.perf — stage timing."""

import logging
from types import SimpleNamespace

import pytest

from cohortveg import perf as perf_module
from cohortveg.perf import PerfMonitor


@pytest.fixture
def fake_clock(monkeypatch):
    """Replace the monitor's clock with a fixed sequence of readings."""
    def _install(*readings):
        ticks = iter(readings)
        monkeypatch.setattr(perf_module, 'time', SimpleNamespace(perf_counter=lambda: next(ticks)))
    return _install


class TestPerfMonitor:
    def test_disabled_records_nothing(self):
        perf = PerfMonitor(enabled=False)
        perf.start()
        with perf.track('stage'):
            pass
        perf.stop()
        assert perf.get_stats() == {}
        assert perf.summary() == {'_total_s': 0}

    def test_track_counts_calls(self, fake_clock):
        fake_clock(0.0, 1.0, 1.0, 3.0, 3.0, 3.5)
        perf = PerfMonitor(enabled=True)
        for _ in range(2):
            with perf.track('fast_step'):
                pass
        with perf.track('annual_demography'):
            pass
        stats = perf.get_stats()
        assert stats['fast_step'].call_count == 2
        assert stats['fast_step'].total_time == 3.0
        assert stats['fast_step'].mean_time == 1.5
        assert stats['annual_demography'].total_time == 0.5

    def test_track_counts_failed_blocks(self):
        perf = PerfMonitor(enabled=True)
        try:
            with perf.track('daily_update'):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert perf.get_stats()['daily_update'].call_count == 1

    def test_summary_and_report(self, fake_clock, caplog):
        fake_clock(0.0, 3.0, 3.0, 4.0)
        perf = PerfMonitor(enabled=True)
        with perf.track('a'):
            pass
        with perf.track('b'):
            pass
        summary = perf.summary()
        assert list(summary)[:2] == ['a', 'b']
        assert summary['a']['pct'] == 75.0
        assert summary['_total_s'] == 4.0
        assert 'TOTAL' in perf.report()
        with caplog.at_level(logging.INFO, logger='cohortveg.perf'):
            perf.log_report()
        assert 'Stage timings' in caplog.text

    def test_run_total_from_start_stop(self, fake_clock):
        fake_clock(0.0, 1.0, 2.0, 10.0)
        perf = PerfMonitor(enabled=True)
        perf.start()
        with perf.track('a'):
            pass
        perf.stop()
        summary = perf.summary()
        assert summary['_total_s'] == 10.0
        assert summary['a']['pct'] == 10.0
