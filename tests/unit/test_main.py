"""Command line entry point."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

import main
from core.models.workflow import RunStatus
from core.services.config_service import ENV_MAPPINGS


CONFIG = """
domains:
  - a.example.com
run_tag: certrun-cli0001
aws:
  region: eu-west-1
issuance:
  contact_email: ops@example.com
"""


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for env_var in ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(CONFIG)
    return str(path)


def fake_result(status=RunStatus.SUCCEEDED, teardown_clean=True):
    return SimpleNamespace(
        status=status,
        teardown_clean=teardown_clean,
        errors=[],
        run_tag="certrun-cli0001",
        duration=None,
        report_path=None,
    )


class TestArguments:
    def test_defaults(self):
        args = main.parse_arguments([])

        assert args.config is None
        assert args.domains is None
        assert not args.no_issue and not args.teardown_only and not args.dry_run

    def test_overrides(self):
        args = main.parse_arguments([
            "--domains", "a.example.com", "b.example.com",
            "--region", "eu-west-1", "--email", "ops@example.com",
            "--no-issue", "--staging", "-v",
        ])

        overrides = main.collect_overrides(args)

        assert overrides["domains"] == ["a.example.com", "b.example.com"]
        assert overrides["aws.region"] == "eu-west-1"
        assert overrides["issuance.contact_email"] == "ops@example.com"
        assert overrides["issuance.enabled"] is False
        assert overrides["issuance.staging"] is True
        assert overrides["log_level"] == "DEBUG"


class TestExitCodes:
    @pytest.mark.parametrize("status,clean,expected", [
        (RunStatus.SUCCEEDED, True, main.EXIT_SUCCESS),
        (RunStatus.PARTIAL_SUCCESS, True, main.EXIT_FAILED),
        (RunStatus.FAILED, True, main.EXIT_FAILED),
        (RunStatus.SUCCEEDED, False, main.EXIT_TEARDOWN_INCOMPLETE),
    ])
    def test_exit_code_for(self, status, clean, expected):
        assert main.exit_code_for(fake_result(status, clean)) == expected


class TestMain:
    @pytest.mark.asyncio
    async def test_dry_run(self, config_file, capsys):
        assert await main.main(["--config", config_file, "--dry-run"]) == main.EXIT_SUCCESS

        output = capsys.readouterr().out
        assert "certrun-cli0001" in output
        assert "a.example.com" in output

    @pytest.mark.asyncio
    async def test_missing_config_file(self, tmp_path):
        code = await main.main(["--config", str(tmp_path / "missing.yml"), "--dry-run"])

        assert code == main.EXIT_VALIDATION

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("issuance:\n  enabled: false\n")

        assert await main.main(["--config", str(path), "--dry-run"]) == main.EXIT_VALIDATION

    @pytest.mark.asyncio
    async def test_teardown_only_needs_run_tag(self):
        assert await main.main(["--teardown-only"]) == main.EXIT_VALIDATION

    @pytest.mark.asyncio
    async def test_run(self, config_file, monkeypatch):
        orchestrator = SimpleNamespace(run=AsyncMock(return_value=fake_result(RunStatus.PARTIAL_SUCCESS)))
        monkeypatch.setattr(main, "build_orchestrator", lambda context, profile: orchestrator)

        code = await main.main(["--config", config_file, "--domains", "b.example.com"])

        assert code == main.EXIT_FAILED
        context = orchestrator.run.await_args.args[0]
        assert context.domains == ("b.example.com",)
        assert context.run_tag == "certrun-cli0001"

    @pytest.mark.asyncio
    async def test_teardown_only(self, monkeypatch):
        orchestrator = SimpleNamespace(teardown_only=AsyncMock(return_value=fake_result(teardown_clean=False)))
        monkeypatch.setattr(main, "build_orchestrator", lambda context, profile: orchestrator)

        code = await main.main(["--teardown-only", "--run-tag", "certrun-old0001"])

        assert code == main.EXIT_TEARDOWN_INCOMPLETE
        assert orchestrator.teardown_only.await_args.args[0].run_tag == "certrun-old0001"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, config_file, monkeypatch):
        orchestrator = SimpleNamespace(run=AsyncMock(side_effect=RuntimeError("boom")))
        monkeypatch.setattr(main, "build_orchestrator", lambda context, profile: orchestrator)

        assert await main.main(["--config", config_file]) == main.EXIT_FAILED
