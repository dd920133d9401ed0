import pytest
import logging
import ingest


# ─── Shared mock helpers ─────────────────────────────────────────────────────

def _make_fast_info(price=110.0):
    """Return a minimal fast_info-like object matching yfinance's FastInfo API."""
    class _FI:
        pass

    fi = _FI()
    fi.last_price = price
    return fi


def _ticker_for(prices):
    """Return a yf.Ticker replacement; symbols missing from `prices` raise."""
    class _T:
        def __init__(self, symbol):
            if symbol not in prices:
                raise RuntimeError(f"fetch failed for {symbol}")
            self.fast_info = _make_fast_info(prices[symbol])
    return _T


# ─── Tests ───────────────────────────────────────────────────────────────────

class TestFetchSinglePrice:
    def test_returns_float(self, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({"AAPL": 187.5}))
        assert ingest.fetch_single_price("AAPL") == 187.5

    @pytest.mark.parametrize("bad", [float("nan"), None, 0.0])
    def test_unusable_price_returns_none(self, monkeypatch, bad):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({"AAPL": bad}))
        assert ingest.fetch_single_price("AAPL") is None

    def test_exception_returns_none(self, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({}))
        assert ingest.fetch_single_price("AAPL") is None


class TestPerSymbolFailureIsolation:
    def test_one_bad_symbol_does_not_stop_others(self, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({"AAPL": 110.0, "GLD": 220.0}))
        results, failed = ingest.fetch_prices(["AAPL", "BADTICKER", "GLD"])
        assert results == {"AAPL": 110.0, "GLD": 220.0}
        assert failed == ["BADTICKER"]

    def test_all_symbols_fail_returns_empty_dict(self, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({}))
        results, failed = ingest.fetch_prices(["AAPL", "GLD"])
        assert results == {}
        assert set(failed) == {"AAPL", "GLD"}

    def test_duplicates_fetched_once(self, monkeypatch):
        calls = []

        def fake_fetch(symbol):
            calls.append(symbol)
            return 1.0

        monkeypatch.setattr(ingest, "fetch_single_price", fake_fetch)
        ingest.fetch_prices(["AAPL", "AAPL", "GLD"])
        assert sorted(calls) == ["AAPL", "GLD"]

    def test_empty_input(self):
        assert ingest.fetch_prices([]) == ({}, [])

    def test_failed_symbols_logged_as_warning(self, monkeypatch, caplog):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({}))
        with caplog.at_level(logging.WARNING):
            ingest.fetch_prices(["AAPL"])
        assert "AAPL" in caplog.text
        assert any(r.levelno >= logging.WARNING for r in caplog.records)


class TestFetchNeverCallsBatchDownload:
    def test_download_is_never_called(self, monkeypatch):
        def bad_download(*args, **kwargs):
            raise AssertionError("batch download called")

        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({"AAPL": 1.0, "GLD": 2.0}))
        monkeypatch.setattr(ingest.yf, "download", bad_download)
        # Must not raise — confirms only the per-symbol yf.Ticker() path is used
        ingest.fetch_prices(["AAPL", "GLD"])


class TestPriceDraft:
    def test_prefilled_with_current_prices(self, populated_store):
        draft = ingest.build_price_draft(populated_store.state["holdings"], {})
        assert draft["AAPL"] == "100.0"
        assert set(draft) == {"VOO", "AAPL", "MSFT", "NVDA", "GLD"}

    def test_fetched_prices_overlay(self, populated_store):
        draft = ingest.build_price_draft(populated_store.state["holdings"], {"AAPL": 105.25})
        assert draft["AAPL"] == "105.25"
        assert draft["MSFT"] == "400.0"

    def test_parse_keeps_numeric_only(self):
        assert ingest.parse_price_edits({"AAPL": "101.5", "MSFT": "", "GLD": "abc", "VOO": 500}) == {
            "AAPL": 101.5, "VOO": 500.0,
        }


class TestRefreshCycle:
    def test_partial_cycle_applies_successes(self, populated_store, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({"AAPL": 120.0, "VOO": 510.0}))
        summary = ingest.run_refresh_cycle(populated_store)

        assert summary["status"] == "PARTIAL"
        assert summary["symbols_succeeded"] == 2
        assert summary["symbols_failed"] == 3
        assert summary["new_trading_day"] is True
        prices = {h["symbol"]: h["current_price"] for h in populated_store.state["holdings"]}
        assert prices["AAPL"] == 120.0
        assert prices["MSFT"] == 400.0

    def test_full_success(self, populated_store, monkeypatch):
        quotes = {s: 1.0 for s in populated_store.symbols()}
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for(quotes))
        assert ingest.run_refresh_cycle(populated_store)["status"] == "SUCCESS"

    def test_failed_cycle_changes_nothing(self, populated_store, monkeypatch):
        monkeypatch.setattr(ingest.yf, "Ticker", _ticker_for({}))
        before = populated_store.state
        summary = ingest.run_refresh_cycle(populated_store)
        assert summary["status"] == "FAILED"
        assert populated_store.state == before
