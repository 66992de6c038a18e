"""Tests for CLI commands via Click CliRunner."""

from click.testing import CliRunner

from debitmanager.cli.main import cli


class TestCLI:
    def _runner(self, tmp_path):
        root = str(tmp_path / "docs")
        return CliRunner(), ["--root", root]

    def test_init_creates_database(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        result = runner.invoke(cli, [*opts, "init"])
        assert result.exit_code == 0
        assert "Database ready:" in result.output
        assert (tmp_path / "docs" / "SQLite" / "debitmanager.db").exists()

    def test_init_migrates_legacy_name(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        runner.invoke(cli, [*opts, "init"])
        sqlite_dir = tmp_path / "docs" / "SQLite"
        (sqlite_dir / "debitmanager.db").rename(sqlite_dir / "debitmanager")

        result = runner.invoke(cli, [*opts, "init"])

        assert result.exit_code == 0
        assert (sqlite_dir / "debitmanager.db").exists()
        assert not (sqlite_dir / "debitmanager").exists()

    def test_backup_local_only(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        result = runner.invoke(cli, [*opts, "backup", "--local-only"])
        assert result.exit_code == 0
        assert "Backup saved locally at" in result.output
        assert len(list((tmp_path / "docs" / "backups").glob("debitmanager-*.db"))) == 1

    def test_backup_without_sinks(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DM_BACKUP_UPLOAD_URL", raising=False)
        runner, opts = self._runner(tmp_path)
        result = runner.invoke(cli, [*opts, "backup"])
        assert result.exit_code == 0
        assert "Backup saved locally at" in result.output

    def test_backups_lists_artifacts(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        runner.invoke(cli, [*opts, "backup", "--local-only"])
        result = runner.invoke(cli, [*opts, "backups"])
        assert result.exit_code == 0
        assert "debitmanager-" in result.output
        assert "just now" in result.output

    def test_backups_empty(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        result = runner.invoke(cli, [*opts, "backups"])
        assert result.exit_code == 0
        assert "No local backups." in result.output

    def test_status(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        before = runner.invoke(cli, [*opts, "status"])
        assert "(not found)" in before.output
        assert "never" in before.output

        runner.invoke(cli, [*opts, "backup", "--local-only"])
        after = runner.invoke(cli, [*opts, "status"])
        assert after.exit_code == 0
        assert "debitmanager.db" in after.output
        assert "just now" in after.output

    def test_restore_round_trip(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        runner.invoke(cli, [*opts, "backup", "--local-only"])
        artifact = next((tmp_path / "docs" / "backups").glob("debitmanager-*.db"))

        result = runner.invoke(cli, [*opts, "restore", str(artifact)])

        assert result.exit_code == 0
        assert "Previous database saved to:" in result.output
        assert "Database restored from:" in result.output

    def test_restore_missing_file_fails(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        runner.invoke(cli, [*opts, "init"])
        result = runner.invoke(cli, [*opts, "restore", str(tmp_path / "missing.db")])
        assert result.exit_code == 1
        assert "prior data was restored" in result.output

    def test_backup_into_unusable_directory_fails(self, tmp_path):
        runner, opts = self._runner(tmp_path)
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "backups").write_bytes(b"not a directory")

        result = runner.invoke(cli, [*opts, "backup", "--local-only"])

        assert result.exit_code == 1
        assert "Backup failed" in result.output
