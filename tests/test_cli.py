"""Tests for the storesync command line."""

import json

import pytest

from storesync import cli
from storesync.local_cache import LEGACY_PRODUCTS_KEY, write_json
from storesync.storefront import Storefront


@pytest.fixture
def storefront(remote, cache, monkeypatch):
    """Route every CLI command to one in-memory storefront."""
    sf = Storefront(remote, cache)
    monkeypatch.setattr(cli, "get_storefront", lambda: sf)
    return sf


class TestParser:
    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: storesync" in capsys.readouterr().out

    def test_group_without_subcommand_prints_help(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["products"])
        assert exc_info.value.code == 0

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--version"])
        assert "storesync 0.1.0" in capsys.readouterr().out


class TestStatus:
    def test_offline_status(self, storefront, remote, capsys):
        remote.failing = True

        assert cli.main(["status"]) == 0

        out = capsys.readouterr().out
        assert "Settings: default" in out
        assert "Products: 0 (default)" in out
        assert "Remote store: -" in out
        assert "Signed in: -" in out
        assert "Outbox: 0 pending" in out

    def test_reports_legacy_data(self, storefront, cache, product_draft, capsys):
        write_json(cache, LEGACY_PRODUCTS_KEY, [{**product_draft, "id": "1"}])

        cli.main(["status"])

        assert "storesync migrate" in capsys.readouterr().out


class TestProducts:
    def test_empty_catalog(self, storefront, capsys):
        assert cli.main(["products", "list"]) == 0
        assert "No products found." in capsys.readouterr().out

    def test_lists_with_store_currency(self, storefront, remote, product_draft, capsys):
        storefront.products.add_product(product_draft)
        remote.kv["app:settings"] = {"currency": "USD"}

        assert cli.main(["products", "list"]) == 0

        out = capsys.readouterr().out
        assert "Classic Tee (Urban)  $499.00  stock=30 [images]" in out

    def test_json_output_with_images(self, storefront, remote, product_draft, capsys):
        added = storefront.products.add_product(product_draft)

        assert cli.main(["products", "list", "--json", "--images"]) == 0

        [listed] = json.loads(capsys.readouterr().out)
        assert listed["id"] == added.id
        assert listed["images"] == product_draft["images"]
        assert remote.calls[-1][1] == "/products?includeImages=true"

    def test_cleanup(self, storefront, remote, product_draft, capsys):
        storefront.products.add_product(product_draft)

        assert cli.main(["products", "cleanup"]) == 0

        assert "Deleted 1 product(s)." in capsys.readouterr().out
        assert not any(k.startswith("product:") for k in remote.kv)


class TestOrdersAndSettings:
    def test_orders_list(self, storefront, remote, capsys):
        remote.kv["order:ORD-1"] = {
            "id": "ORD-1", "items": [], "subtotal": 0, "shipping": 0, "tax": 0,
            "total": 1180, "status": "shipped", "date": "2024-03-05T10:00:00Z",
            "createdAt": "2024-03-05T10:00:00Z", "userEmail": "alice@example.com",
        }

        assert cli.main(["orders", "list"]) == 0

        out = capsys.readouterr().out
        assert "ORD-1  2024-03-05  shipped" in out
        assert "₹1180.00" in out
        assert "alice@example.com" in out

    def test_settings_show(self, storefront, remote, capsys):
        remote.kv["app:settings"] = {"taxRate": 12}

        assert cli.main(["settings", "show"]) == 0

        captured = capsys.readouterr()
        assert json.loads(captured.out)["taxRate"] == 12
        assert "(from remote)" in captured.err


class TestOutbox:
    def test_list_empty(self, storefront, capsys):
        assert cli.main(["outbox", "list"]) == 0
        assert "Outbox is empty." in capsys.readouterr().out

    def test_list_and_drain(self, storefront, remote, capsys):
        remote.failing = True
        storefront.settings.update_settings({"taxRate": 5})

        assert cli.main(["outbox", "list"]) == 0
        out = capsys.readouterr().out
        assert "POST   /settings  attempts=1" in out
        assert "remote unreachable" in out

        assert cli.main(["outbox", "drain"]) == 1
        assert "Remaining: 1" in capsys.readouterr().out

        remote.failing = False
        assert cli.main(["outbox", "drain"]) == 0
        assert remote.kv["app:settings"]["taxRate"] == 5


class TestMaintenance:
    def test_hygiene_nothing_to_remove(self, storefront, capsys):
        assert cli.main(["hygiene"]) == 0
        assert "Nothing to remove." in capsys.readouterr().out

    def test_migrate_nothing(self, storefront, capsys):
        assert cli.main(["migrate"]) == 0
        assert "Nothing to migrate." in capsys.readouterr().out

    def test_migrate_uploads(self, storefront, remote, cache, product_draft, capsys):
        write_json(cache, LEGACY_PRODUCTS_KEY, [{**product_draft, "id": "1"}])

        assert cli.main(["migrate"]) == 0

        assert "Migrated 1 product(s) and 0 order(s)." in capsys.readouterr().out
        assert "product:1" in remote.kv

    def test_migrate_failure(self, storefront, remote, cache, product_draft, capsys):
        write_json(cache, LEGACY_PRODUCTS_KEY, [{**product_draft, "id": "1"}])
        remote.failing = True

        assert cli.main(["migrate"]) == 1
        assert "Migration failed" in capsys.readouterr().err

    def test_migrate_skip(self, storefront, remote, cache, product_draft, capsys):
        write_json(cache, LEGACY_PRODUCTS_KEY, [{**product_draft, "id": "1"}])

        assert cli.main(["migrate", "--skip"]) == 0
        assert "Migration skipped." in capsys.readouterr().out
        assert remote.calls == []


class TestEnvironment:
    def test_unreachable_remote_uses_local_defaults(self, temp_dir, monkeypatch, capsys):
        monkeypatch.setenv("STORESYNC_DATA_DIR", str(temp_dir))
        monkeypatch.setenv("STORESYNC_API_URL", "http://127.0.0.1:9")
        monkeypatch.setenv("STORESYNC_TIMEOUT", "1")

        assert cli.main(["settings", "show"]) == 0

        captured = capsys.readouterr()
        assert json.loads(captured.out)["storeName"] == "Urban Wear Retail"
        assert "(from default)" in captured.err

    def test_bad_environment_is_reported(self, temp_dir, monkeypatch, capsys):
        monkeypatch.setenv("STORESYNC_DATA_DIR", str(temp_dir))
        monkeypatch.setenv("STORESYNC_TIMEOUT", "soon")

        assert cli.main(["settings", "show"]) == 1
        assert "Error:" in capsys.readouterr().err