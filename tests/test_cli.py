"""Unit tests for ged.cli — command parsing and execution against a SQLite database."""

import pytest

import ged.cli as cli_mod
from ged.cli import main


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "ged.yaml"
    path.write_text(
        "platform:\n"
        "  name: GED test\n"
        "database:\n"
        f"  url: sqlite:///{tmp_path / 'cli.db'}\n"
        "logging:\n"
        f"  directory: {tmp_path / 'logs'}\n"
        "  async_queue:\n"
        "    flush_interval_ms: 10\n"
        "storage:\n"
        f"  local_cache_dir: {tmp_path / 'cache'}\n"
        f"  server_root: {tmp_path / 'server'}\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def initialized(config_path, capsys):
    assert main(["--config", config_path, "init"]) == 0
    capsys.readouterr()
    return config_path


class TestCLIParsing:
    def test_module_has_expected_commands(self):
        for name in ("cmd_init", "cmd_tree", "cmd_responsible", "cmd_repair_icons", "cmd_logs_cleanup"):
            assert hasattr(cli_mod, name)

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "init" in capsys.readouterr().out

    def test_set_and_clear_are_exclusive(self, config_path):
        with pytest.raises(SystemExit):
            main(["--config", config_path, "responsible", "--set", "1", "--clear"])


class TestInit:
    def test_creates_admin_and_system_folders(self, config_path, capsys):
        assert main(["--config", config_path, "init", "--admin-email", "root@example.org"]) == 0
        out = capsys.readouterr().out
        assert "Created admin user" in out
        for code in ("COURRIER", "CONFIDENTIEL", "CORBEILLE"):
            assert code in out

    def test_idempotent(self, initialized, capsys):
        assert main(["--config", initialized, "init"]) == 0
        out = capsys.readouterr().out
        assert "already exists" in out
        assert "System folders already present" in out

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("platform:\n  environment: qa\n", encoding="utf-8")
        assert main(["--config", str(path), "init"]) == 1
        assert "[ERROR]" in capsys.readouterr().out


class TestTree:
    def test_hides_confidential_by_default(self, initialized, capsys):
        assert main(["--config", initialized, "tree"]) == 0
        out = capsys.readouterr().out
        assert "ROOT" in out
        assert "COURRIER" in out
        assert "CONFIDENTIEL" not in out

    def test_all(self, initialized, capsys):
        assert main(["--config", initialized, "tree", "--all"]) == 0
        assert "CONFIDENTIEL" in capsys.readouterr().out

    def test_before_init_fails_cleanly(self, config_path, capsys):
        assert main(["--config", config_path, "tree"]) == 1
        assert "[ERROR]" in capsys.readouterr().out


class TestResponsible:
    def test_show_set_clear(self, initialized, capsys):
        assert main(["--config", initialized, "responsible"]) == 0
        assert "No mail responsible set" in capsys.readouterr().out

        assert main(["--config", initialized, "responsible", "--set", "1"]) == 0
        out = capsys.readouterr().out
        assert "Responsible set to user 1" in out
        assert "code=admin" in out

        assert main(["--config", initialized, "responsible", "--clear"]) == 0
        assert "Responsible removed" in capsys.readouterr().out

        assert main(["--config", initialized, "responsible", "--clear"]) == 0
        assert "No responsible was set" in capsys.readouterr().out

    def test_unknown_user(self, initialized, capsys):
        assert main(["--config", initialized, "responsible", "--set", "404"]) == 1
        assert "[ERROR]" in capsys.readouterr().out


class TestMaintenance:
    def test_repair_icons(self, initialized, capsys):
        assert main(["--config", initialized, "repair-icons"]) == 0
        assert "0 folder icon(s) repaired" in capsys.readouterr().out

    def test_logs_cleanup(self, initialized, capsys):
        assert main(["--config", initialized, "logs-cleanup"]) == 0
        assert "Deleted 0 file(s), compressed 0" in capsys.readouterr().out

    def test_demoted_admin_is_refused(self, initialized, tmp_path, capsys):
        from sqlalchemy import update

        from ged.db.models import User
        from ged.db.session import Database

        db = Database(f"sqlite:///{tmp_path / 'cli.db'}")
        with db.session_scope() as session:
            session.execute(update(User).where(User.code == "admin").values(authority_level=1))
        db.dispose()

        assert main(["--config", initialized, "repair-icons"]) == 1
        assert "no longer level 0" in capsys.readouterr().out
