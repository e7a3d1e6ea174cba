"""Test that the project setup is working correctly."""

import whale_monitor


def test_version() -> None:
    """Test that version is defined."""
    assert whale_monitor.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all subpackages can be imported."""
    from whale_monitor import alerts, api, cli, core, db, models, web

    for module in (alerts, api, cli, core, db, models, web):
        assert module is not None
