"""Tests for the whale registry."""


class TestWhaleDB:

    def test_add_whale_is_insert_only(self, whale_db, whale_address):
        assert whale_db.add_whale(whale_address) is True
        assert whale_db.add_whale(whale_address.upper().replace("0X", "0x"), source="other") is False

        whale = whale_db.get_whale(whale_address)
        assert whale.source == "manual"
        assert whale_db.count() == 1

    def test_addresses_are_lowercased(self, whale_db):
        whale_db.add_whale("0xABCDEF" + "0" * 34)

        assert whale_db.get_addresses() == ["0xabcdef" + "0" * 34]

    def test_touch_updates_account_value(self, whale_db, whale_address):
        whale_db.add_whale(whale_address)

        whale_db.touch(whale_address, account_value=1_250_000.0)

        assert whale_db.get_whale(whale_address).account_value == 1_250_000.0

    def test_top_traders_by_pnl(self, whale_db, whale_address, other_address):
        whale_db.add_whale(whale_address)
        whale_db.add_whale(other_address)
        whale_db.update_stats(whale_address, total_pnl=-5_000, roi=-2.0, win_rate=40.0)
        whale_db.update_stats(other_address, total_pnl=90_000, roi=15.0, win_rate=70.0)

        top = whale_db.get_top_traders(limit=10)

        assert [w.address for w in top] == [other_address, whale_address]
        assert top[0].roi == 15.0
        assert top[0].win_rate == 70.0
        assert len(whale_db.get_top_traders(limit=1)) == 1

    def test_stats(self, whale_db, whale_address, other_address):
        whale_db.add_whale(whale_address)
        whale_db.add_whale(other_address, source="leaderboard")

        stats = whale_db.get_stats()

        assert stats.total_whales == 2
        assert stats.manual == 1
