"""Unit tests for the svgwrap command line."""

import asyncio
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from svgwrap import __version__
from svgwrap.cli.main import app
from svgwrap.services.batch_history_service import BatchHistoryService


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("svgwrap.cli.main.setup_logging") as mock_setup:
        yield mock_setup


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "history.db")


@pytest.fixture
def images(tmp_path, png_bytes, jpeg_bytes):
    photo = tmp_path / "photo.png"
    photo.write_bytes(png_bytes)
    shot = tmp_path / "shot.jpg"
    shot.write_bytes(jpeg_bytes)
    return [str(photo), str(shot)]


def saved_records(db_path):
    return asyncio.run(BatchHistoryService(db_path=db_path).list())


class TestConvertCommand:
    def test_convert_saves_and_exports(self, runner, db_path, images, tmp_path):
        out = tmp_path / "out"

        result = runner.invoke(app, ["--db", db_path, "convert", *images, "-o", str(out)])

        assert result.exit_code == 0
        assert "Saved to history" in result.stdout
        assert "Exported 2/2 SVG files" in result.stdout
        assert sorted(p.name for p in out.iterdir()) == ["photo.svg", "shot.svg"]
        records = saved_records(db_path)
        assert len(records) == 1
        assert records[0].batch.total == 2

    def test_convert_without_saving(self, runner, db_path, images):
        result = runner.invoke(app, ["--db", db_path, "convert", *images, "--no-save"])

        assert result.exit_code == 0
        assert "Saved to history" not in result.stdout
        assert saved_records(db_path) == []

    def test_convert_exports_one_combined_file(self, runner, db_path, images, tmp_path):
        out = tmp_path / "out"

        result = runner.invoke(
            app, ["--db", db_path, "convert", *images, "-o", str(out), "--combined"]
        )

        assert result.exit_code == 0
        assert "Exported 2 SVG documents" in result.stdout
        [combined] = list(out.iterdir())
        assert combined.name.startswith("svg-batch-")
        assert combined.suffix == ".txt"
        text = combined.read_text()
        assert "<!-- File: photo.svg -->" in text
        assert "<!-- File: shot.svg -->" in text

    def test_convert_rejects_unsupported_file(self, runner, db_path, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")

        result = runner.invoke(app, ["--db", db_path, "convert", str(notes)])

        assert result.exit_code == 2
        assert "Unsupported file type" in result.stdout

    def test_convert_missing_file(self, runner, db_path, tmp_path):
        result = runner.invoke(
            app, ["--db", db_path, "convert", str(tmp_path / "nope.png")]
        )

        assert result.exit_code == 2
        assert "Cannot read input" in result.stdout

    def test_partial_failure_exits_nonzero(self, runner, db_path, images, tmp_path):
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"not an image at all")

        result = runner.invoke(app, ["--db", db_path, "convert", *images, str(broken)])

        assert result.exit_code == 1
        assert "2/3 succeeded" in result.stdout
        assert len(saved_records(db_path)) == 1

    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_logging_configured_once_per_invocation(self, runner, quiet_logging, db_path):
        runner.invoke(app, ["--db", db_path, "--log-level", "DEBUG", "history", "info"])

        quiet_logging.assert_called_once()
        assert quiet_logging.call_args.kwargs["log_level"] == "DEBUG"


class TestHistoryCommands:
    @pytest.fixture
    def record_id(self, runner, db_path, images):
        result = runner.invoke(app, ["--db", db_path, "convert", *images])
        assert result.exit_code == 0
        return saved_records(db_path)[0].record_id

    def test_list_empty(self, runner, db_path):
        result = runner.invoke(app, ["--db", db_path, "history", "list"])

        assert result.exit_code == 0
        assert "History is empty" in result.stdout

    def test_list(self, runner, db_path, record_id):
        result = runner.invoke(app, ["--db", db_path, "history", "list"])

        assert result.exit_code == 0
        assert "Conversion history" in result.stdout

    def test_show(self, runner, db_path, record_id):
        result = runner.invoke(app, ["--db", db_path, "history", "show", record_id])

        assert result.exit_code == 0
        assert "photo.png" in result.stdout
        assert "succeeded" in result.stdout

    def test_show_unknown(self, runner, db_path):
        result = runner.invoke(app, ["--db", db_path, "history", "show", "missing"])

        assert result.exit_code == 1
        assert "No history record" in result.stdout

    def test_export(self, runner, db_path, record_id, tmp_path):
        out = tmp_path / "exported"

        result = runner.invoke(
            app, ["--db", db_path, "history", "export", record_id, "-o", str(out)]
        )

        assert result.exit_code == 0
        assert (out / "photo.svg").exists()

    def test_delete(self, runner, db_path, record_id):
        result = runner.invoke(app, ["--db", db_path, "history", "delete", record_id])

        assert result.exit_code == 0
        assert saved_records(db_path) == []

    def test_clear_and_info(self, runner, db_path, record_id):
        result = runner.invoke(app, ["--db", db_path, "history", "clear", "--yes"])
        assert result.exit_code == 0
        assert "History cleared" in result.stdout

        result = runner.invoke(app, ["--db", db_path, "history", "info"])
        assert result.exit_code == 0
        assert "Records: 0" in result.stdout

    def test_clear_declined(self, runner, db_path, record_id):
        result = runner.invoke(app, ["--db", db_path, "history", "clear"], input="n\n")

        assert result.exit_code == 1
        assert len(saved_records(db_path)) == 1

    def test_export_combined(self, runner, db_path, record_id, tmp_path):
        out = tmp_path / "exported"

        result = runner.invoke(
            app,
            ["--db", db_path, "history", "export", record_id, "-o", str(out), "--combined"],
        )

        assert result.exit_code == 0
        [combined] = list(out.iterdir())
        assert combined.read_text().count("<!-- File: ") == 2
