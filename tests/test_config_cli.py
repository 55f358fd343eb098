"""
tests/test_config_cli.py — Config Loader & ``python -m laurel``
================================================================
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from laurel.__main__ import main
from laurel.config import LaurelConfig, load_config
from laurel.database.engine import create_db_engine
from laurel.services.progress_service import record_task_progress
from laurel.services.template_service import create_reward_template


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == LaurelConfig()

    def test_values_are_read(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "tenant_id: acme\n"
            "enforce_schedule: false\n"
            "page_size: 50\n"
            "side_effect_workers: 8\n"
            "voucher_prefix: GIFT\n"
            "log_level: debug\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.tenant_id == "acme"
        assert cfg.enforce_schedule is False
        assert cfg.page_size == 50
        assert cfg.side_effect_workers == 8
        assert cfg.voucher_prefix == "GIFT"
        assert cfg.log_level == "DEBUG"

    def test_invalid_log_level(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("log_level: chatty\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)

    def test_config_is_frozen(self):
        cfg = LaurelConfig()
        with pytest.raises(AttributeError):
            cfg.page_size = 10


class TestCli:
    @pytest.fixture
    def db_url(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        monkeypatch.setenv("DATABASE_URL", url)
        monkeypatch.chdir(tmp_path)
        return url

    def test_init_seed_and_query(self, db_url, capsys):
        assert main(["init-db"]) == 0
        assert main(["seed"]) == 0
        assert "Seeded 6 reward template(s)." in capsys.readouterr().out

        assert main(["seed"]) == 0
        assert "Seeded 0 reward template(s)." in capsys.readouterr().out

        assert main(["tier-info", "u-1"]) == 0
        info = json.loads(capsys.readouterr().out)
        assert info["currentTier"] == "bronze"
        assert info["nextTier"] == "silver"

        assert main(["summary", "u-1", "--tenant", "acme"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["totalRewards"] == 0

    def test_missing_database_url(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.chdir(tmp_path)
        assert main(["init-db"]) == 1

    def test_bad_config_exit_code(self, db_url, tmp_path):
        (tmp_path / "bad.yaml").write_text("log_level: loud\n", encoding="utf-8")
        assert main(["--config", str(tmp_path / "bad.yaml"), "init-db"]) == 2

    def test_config_drives_listing_claim_and_rankings(self, db_url, tmp_path, capsys):
        (tmp_path / "config.yaml").write_text(
            "page_size: 2\n"
            "voucher_prefix: GIFT\n"
            "side_effect_workers: 2\n"
            "enforce_schedule: false\n",
            encoding="utf-8",
        )
        (tmp_path / "scheduled.yaml").write_text("page_size: 2\n", encoding="utf-8")
        assert main(["seed"]) == 0
        capsys.readouterr()

        engine = create_db_engine(db_url)
        mug = create_reward_template(engine, name="Mug", points=10)
        create_reward_template(
            engine, name="Later", starts_at=datetime.now(UTC) + timedelta(days=3)
        )
        record_task_progress(engine, reward_id=mug.id, user_id="u-1")
        engine.dispose()

        assert main(["rewards"]) == 0
        listing = json.loads(capsys.readouterr().out)
        assert listing["total"] == 8
        assert listing["pages"] == 4
        assert len(listing["items"]) == 2

        assert main(["--config", str(tmp_path / "scheduled.yaml"), "rewards"]) == 0
        assert json.loads(capsys.readouterr().out)["total"] == 7

        assert main(["claim", "u-1", str(mug.id), "--issuer", "staff-1"]) == 0
        claimed = json.loads(capsys.readouterr().out)
        assert claimed["status"] == "redeemed"
        assert claimed["voucherCode"].startswith("GIFT-")

        assert main(["claim", "u-1", str(mug.id)]) == 1

        assert main(["leaderboard"]) == 0
        board = json.loads(capsys.readouterr().out)
        assert board == [{"rank": 1, "userId": "u-1", "points": 10, "tier": "bronze"}]

        assert main(["analytics"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["claims"]["total_claims"] == 1
        assert report["points"]["total"]["total_points"] == 10
