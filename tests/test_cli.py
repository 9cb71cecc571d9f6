"""
Tests for CLI commands.

Uses typer's CliRunner; upstream calls are mocked with aioresponses.
"""

import json

from aioresponses import aioresponses
from typer.testing import CliRunner

from bimsync import __version__
from bimsync.cli.main import app

runner = CliRunner()

ACC = "https://developer.api.autodesk.com"


def flat(output: str) -> str:
    """Collapse Rich line wrapping."""
    return " ".join(output.split())


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"bimsync version {__version__}" in result.output

    def test_version_short_flag(self):
        result = runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert "bimsync version" in result.output


class TestHelp:
    """Tests for help output."""

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "discover" in result.output
        assert "sync" in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "discover" in result.output


class TestDiscover:
    """Tests for 'bimsync discover'."""

    def test_missing_parent_id(self, tmp_path):
        result = runner.invoke(app, ["discover", "hubs", "--project-dir", str(tmp_path)])
        assert result.exit_code == 2
        assert "needs a account id" in flat(result.output)

    def test_unknown_level(self, tmp_path):
        result = runner.invoke(app, ["discover", "folders", "--project-dir", str(tmp_path)])
        assert result.exit_code != 0

    def test_missing_token(self, tmp_path):
        result = runner.invoke(
            app,
            ["discover", "accounts", "--project-dir", str(tmp_path)],
            env={"BIMSYNC_TOKEN": ""},
        )
        assert result.exit_code == 1
        assert "No credential" in flat(result.output)

    def test_list_accounts(self, tmp_path):
        with aioresponses() as m:
            m.get(f"{ACC}/project/v1/hubs", payload={"data": [{"id": "b.acct-1", "attributes": {"name": "Contoso"}}]})
            result = runner.invoke(
                app,
                ["discover", "accounts", "--source", "acc", "--token", "abc", "--project-dir", str(tmp_path)],
            )
        assert result.exit_code == 0, result.output
        assert "acct-1" in result.output
        assert "Contoso" in result.output

    def test_configured_base_url(self, tmp_path):
        (tmp_path / "config.yaml").write_text("sources:\n  acc:\n    base_url: https://aps.example.com\n")
        with aioresponses() as m:
            m.get("https://aps.example.com/project/v1/hubs/b.acct-1/projects", payload={"data": []})
            result = runner.invoke(
                app,
                ["discover", "projects", "b.acct-1", "-t", "abc", "--project-dir", str(tmp_path)],
            )
        assert result.exit_code == 0, result.output
        assert "Projects (0)" in result.output

    def test_not_found(self, tmp_path):
        with aioresponses() as m:
            m.get(f"{ACC}/project/v1/hubs/b.nope/projects", status=404, payload={"reason": "Hub not found"})
            result = runner.invoke(
                app,
                ["discover", "projects", "b.nope", "-t", "abc", "--project-dir", str(tmp_path)],
            )
        assert result.exit_code == 1
        assert "Hub not found" in flat(result.output)

    def test_invalid_config(self, tmp_path):
        (tmp_path / "config.yaml").write_text("sources:\n  dropbox: {}\n")
        result = runner.invoke(app, ["discover", "accounts", "-t", "abc", "--project-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "Unknown source kind" in flat(result.output)


class TestSync:
    """Tests for 'bimsync sync'."""

    def test_sync_without_token_fails(self, tmp_path):
        result = runner.invoke(
            app,
            ["sync", "b.p1/urn:item-1", "--project-dir", str(tmp_path)],
            env={"BIMSYNC_TOKEN": ""},
        )
        assert result.exit_code == 1
        assert "error" in result.output
        assert "AuthError" in result.output

    def test_sync_record_output(self, tmp_path):
        versions_url = f"{ACC}/data/v1/projects/b.p1/items/urn:item-1/versions"
        version = {
            "type": "versions",
            "id": "urn:v1",
            "attributes": {"displayName": "model.rvt"},
            "relationships": {
                "storage": {"data": {"id": "urn:storage"}},
                "derivatives": {"data": {"id": "dXJuOnYx"}},
            },
        }
        (tmp_path / "config.yaml").write_text("runtime:\n  max_attempts: 1\n")
        with aioresponses() as m:
            m.get(versions_url, payload={"data": [version]}, repeat=True)
            m.post(f"{ACC}/modelderivative/v2/designdata/job", payload={"result": "success"})
            m.get(
                f"{ACC}/modelderivative/v2/designdata/dXJuOnYx/manifest",
                payload={"status": "success", "derivatives": [{"outputType": "svf2", "guid": "g1"}]},
            )
            m.get("http://localhost:3000/wasm/web-ifc.wasm", body=b"\x00asm\x01")
            result = runner.invoke(
                app,
                ["sync", "b.p1/urn:item-1", "-t", "abc", "--record", "--project-dir", str(tmp_path)],
            )

        assert result.exit_code == 0, result.output
        record = json.loads(result.output[result.output.index('{\n  "urn"') :])
        assert record["urn"] == "dXJuOnYx"
        assert record["manifest"]["streams"][0]["guid"] == "g1"
