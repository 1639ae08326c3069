from types import SimpleNamespace

import pytest

import autobuild.services.deploy_adapter as deploy_adapter_module
from autobuild.services.deploy_adapter import DeployConfig, VercelDeployAdapter
from autobuild.tools.exceptions import CommandTimeoutError


def _stub_adapter(monkeypatch, outcomes, calls):
    class StubAdapter:
        def __init__(self, base_dir, allowed_commands):
            self.base_dir = base_dir
            self.allowed_commands = allowed_commands

        async def run(self, command, *, args=None, cwd=None, env=None, timeout=None):
            calls.append((self.base_dir, command, tuple(args or ()), env, timeout))
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    monkeypatch.setattr(deploy_adapter_module, "CommandAdapter", StubAdapter)


@pytest.mark.asyncio
async def test_preview_deploy_returns_first_vercel_url(monkeypatch, tmp_path):
    calls = []
    _stub_adapter(
        monkeypatch,
        [
            SimpleNamespace(
                stdout="Inspect: https://vercel.com/team/demo\n"
                "Preview: https://demo-abc123.vercel.app [2s]\n",
                stderr="",
                exit_code=0,
            )
        ],
        calls,
    )
    adapter = VercelDeployAdapter("vercel", token="tok", team_id="team", timeout=60.0)

    result = await adapter.deploy(tmp_path, DeployConfig(project_name="demo"))

    assert result.success is True
    assert result.url == "https://demo-abc123.vercel.app"
    assert result.production_url is None
    assert calls == [
        (
            tmp_path,
            "vercel",
            ("--yes", "--token", "tok", "--scope", "team", "--name", "demo"),
            {"VERCEL_TOKEN": "tok"},
            60.0,
        )
    ]


@pytest.mark.asyncio
async def test_production_deploy_sets_production_url(monkeypatch, tmp_path):
    calls = []
    _stub_adapter(
        monkeypatch,
        [SimpleNamespace(stdout="Production: https://demo.vercel.app\n", stderr="", exit_code=0)],
        calls,
    )
    adapter = VercelDeployAdapter()

    result = await adapter.deploy(tmp_path, DeployConfig(production=True))

    assert result.success is True
    assert result.production_url == "https://demo.vercel.app"
    assert calls[0][2] == ("--yes", "--prod")
    assert calls[0][3] is None


@pytest.mark.asyncio
async def test_preview_deploy_without_url_fails(monkeypatch, tmp_path):
    _stub_adapter(
        monkeypatch,
        [SimpleNamespace(stdout="Queued\n", stderr="", exit_code=0)],
        [],
    )

    result = await VercelDeployAdapter().deploy(tmp_path)

    assert result.success is False
    assert "no URL found" in result.error


@pytest.mark.asyncio
async def test_cli_errors_become_failed_results(monkeypatch, tmp_path):
    _stub_adapter(
        monkeypatch,
        [
            SimpleNamespace(stdout="", stderr="Error: not authorized", exit_code=1),
            CommandTimeoutError("Command 'vercel' timed out after 1 seconds"),
            FileNotFoundError("vercel"),
        ],
        [],
    )
    adapter = VercelDeployAdapter()

    rejected = await adapter.deploy(tmp_path)
    timed_out = await adapter.deploy(tmp_path)
    missing = await adapter.deploy(tmp_path)

    assert rejected.error == "Error: not authorized"
    assert "timed out" in timed_out.error
    assert "could not be started" in missing.error
    assert not any(result.success for result in (rejected, timed_out, missing))


@pytest.mark.asyncio
async def test_check_cli_reports_installation_and_user(monkeypatch):
    calls = []
    _stub_adapter(
        monkeypatch,
        [
            SimpleNamespace(stdout="Vercel CLI 37.0.0\n", stderr="", exit_code=0),
            SimpleNamespace(stdout="octocat\n", stderr="", exit_code=0),
        ],
        calls,
    )

    status = await VercelDeployAdapter().check_cli()

    assert status.installed is True
    assert status.authenticated is True
    assert status.user == "octocat"
    assert [call[2] for call in calls] == [("--version",), ("whoami",)]


@pytest.mark.asyncio
async def test_check_cli_when_not_installed(monkeypatch):
    _stub_adapter(monkeypatch, [FileNotFoundError("vercel")], [])

    status = await VercelDeployAdapter().check_cli()

    assert status.installed is False
    assert status.authenticated is False
