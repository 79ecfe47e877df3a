"""Tests for the config store (file over env, validated overrides)."""
from decimal import Decimal

import pytest

from digipay.config_store import MASK, ConfigStore, ConfigUpdateError
from digipay.settings import SECRET_FIELDS, Settings


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("swap_rate: '1600.00'\nmin_withdrawal: 500\n")
    return path


def test_file_is_master_over_env(monkeypatch, config_file):
    monkeypatch.setenv("SWAP_RATE", "1400")
    monkeypatch.setenv("SWAP_FEE_PERCENT", "2")
    store = ConfigStore(Settings, str(config_file))
    s = store.get_settings()
    assert s.swap_rate == Decimal("1600.00")
    assert s.swap_fee_percent == Decimal("2")
    assert s.min_withdrawal == Decimal("500")


def test_missing_or_broken_file_falls_back(tmp_path):
    assert ConfigStore(Settings, str(tmp_path / "absent.yaml")).get_settings().swap_rate == Decimal("1550.00")
    broken = tmp_path / "broken.yaml"
    broken.write_text("swap_rate: [unclosed")
    assert ConfigStore(Settings, str(broken)).get_settings().swap_rate == Decimal("1550.00")


def test_overrides_win_and_clear(config_file):
    store = ConfigStore(Settings, str(config_file))
    assert store.update({"swap_rate": "1700", "trade_expiry_auto_cancel": True}) == [
        "swap_rate",
        "trade_expiry_auto_cancel",
    ]
    assert store.get_settings().swap_rate == Decimal("1700")
    assert store.update({"swap_rate": "1700"}) == []

    # Overrides survive a reload from file
    config_file.write_text("swap_rate: '1650.00'\nmin_withdrawal: 2000\n")
    store.reload_from_file()
    assert store.get_settings().swap_rate == Decimal("1700")
    assert store.get_settings().min_withdrawal == Decimal("2000")

    store.clear_overrides()
    assert store.overrides() == {}
    assert store.get_settings().swap_rate == Decimal("1650.00")


@pytest.mark.parametrize(
    "overrides",
    [{"swap_rate": "0"}, {"swap_fee_percent": "100"}, {"min_deposit": "abc"}, {"no_such_knob": 1}],
)
def test_rejected_overrides_keep_previous(overrides):
    store = ConfigStore(Settings)
    before = store.get_settings()
    with pytest.raises(ConfigUpdateError):
        store.update(overrides)
    assert store.get_settings() is before
    assert store.overrides() == {}


def test_snapshot_masks_secrets():
    store = ConfigStore(Settings)
    store.update({"paystack_secret_key": "sk_live_real"})
    snapshot = store.snapshot(SECRET_FIELDS)
    assert snapshot["paystack_secret_key"] == MASK
    assert snapshot["secret_key"] == MASK
    assert snapshot["swap_rate"] == "1550.00"
