"""
Autolabel Tests - CLI
"""

import pytest
from click.testing import CliRunner
from PIL import Image

from autolabel.cli import cli
from autolabel.config import settings
from autolabel.store import RecordStore


@pytest.fixture
def state_file(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_path", tmp_path / "storage")
    monkeypatch.setattr(settings, "state_file", tmp_path / "storage" / "records.json")
    return settings.state_file


@pytest.fixture
def photo_dir(tmp_path):
    directory = tmp_path / "photos"
    directory.mkdir()
    for name in ("IMG_1.jpg", "IMG_2.jpg"):
        Image.new("RGB", (8, 8)).save(directory / name)
    return directory


class TestCli:
    def test_ingest_and_list(self, state_file, photo_dir):
        runner = CliRunner()

        result = runner.invoke(cli, ["ingest", str(photo_dir)])
        assert result.exit_code == 0
        assert "Added 2 photos" in result.output

        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "IMG_1.jpg" in result.output
        assert "pending" in result.output

    def test_status(self, state_file, photo_dir):
        runner = CliRunner()
        runner.invoke(cli, ["ingest", str(photo_dir)])

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Total photos: 2" in result.output
        assert "export problems" in result.output

    def test_edit(self, state_file, photo_dir):
        runner = CliRunner()
        runner.invoke(cli, ["ingest", str(photo_dir)])
        record = RecordStore(state_file).all()[0]

        result = runner.invoke(cli, ["edit", record.id, "--group", "MWI.1.2.10A.5.3"])

        assert result.exit_code == 0
        assert RecordStore(state_file).get(record.id).new_name == "MWI.1.2.10A.5.3.jpg"

    def test_edit_unknown_record(self, state_file):
        result = CliRunner().invoke(cli, ["edit", "missing", "--group", "x"])
        assert result.exit_code == 1

    def test_reset(self, state_file, photo_dir):
        runner = CliRunner()
        runner.invoke(cli, ["ingest", str(photo_dir)])

        result = runner.invoke(cli, ["reset", "--yes"])

        assert result.exit_code == 0
        assert RecordStore(state_file).count() == 0
