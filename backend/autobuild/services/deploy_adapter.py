from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from autobuild.tools.command_adapter import CommandAdapter
from autobuild.tools.exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)

DEPLOY_URL_PATTERN = re.compile(r"https://[^\s]+\.vercel\.app")


@dataclass(slots=True)
class DeployConfig:
    project_name: str | None = None
    production: bool = False


@dataclass(slots=True)
class DeployResult:
    success: bool
    url: str | None = None
    production_url: str | None = None
    project_name: str | None = None
    error: str | None = None


@dataclass(slots=True)
class DeployCliStatus:
    installed: bool
    authenticated: bool
    user: str | None = None


class VercelDeployAdapter:
    """Publishes a workspace with the Vercel CLI and reports the resulting URL."""

    def __init__(
        self,
        cli: str = "vercel",
        *,
        token: str | None = None,
        team_id: str | None = None,
        timeout: float = 900.0,
    ) -> None:
        self.cli = cli
        self.token = token
        self.team_id = team_id
        self.timeout = timeout

    def _auth_args(self) -> list[str]:
        args: list[str] = []
        if self.token:
            args += ["--token", self.token]
        if self.team_id:
            args += ["--scope", self.team_id]
        return args

    def _env(self) -> dict[str, str] | None:
        return {"VERCEL_TOKEN": self.token} if self.token else None

    def build_args(self, config: DeployConfig) -> list[str]:
        args = ["--yes"]
        if config.production:
            args.append("--prod")
        args += self._auth_args()
        if config.project_name:
            args += ["--name", config.project_name]
        return args

    async def deploy(self, workspace_path: Path, config: DeployConfig | None = None) -> DeployResult:
        config = config or DeployConfig()
        adapter = CommandAdapter(workspace_path, [self.cli])
        logger.info("Deploying %s with %s", workspace_path, self.cli)

        try:
            result = await adapter.run(
                self.cli,
                args=self.build_args(config),
                env=self._env(),
                timeout=self.timeout,
            )
        except CommandTimeoutError as exc:
            return DeployResult(success=False, project_name=config.project_name, error=str(exc))
        except OSError as exc:
            return DeployResult(
                success=False,
                project_name=config.project_name,
                error=f"Deploy CLI '{self.cli}' could not be started: {exc}",
            )

        if result.exit_code != 0:
            error = result.stderr.strip() or result.stdout.strip()
            return DeployResult(
                success=False,
                project_name=config.project_name,
                error=error or f"{self.cli} exited with code {result.exit_code}",
            )

        match = DEPLOY_URL_PATTERN.search(result.stdout)
        url = match.group(0) if match else None

        if config.production:
            return DeployResult(
                success=True,
                url=url,
                production_url=url,
                project_name=config.project_name,
            )
        if url is None:
            return DeployResult(
                success=False,
                project_name=config.project_name,
                error=(
                    "Deployment may have succeeded but no URL found. "
                    f"Output: {result.stdout.strip()}"
                ),
            )
        return DeployResult(success=True, url=url, project_name=config.project_name)

    async def check_cli(self) -> DeployCliStatus:
        adapter = CommandAdapter(Path.home(), [self.cli])
        try:
            version = await adapter.run(self.cli, args=["--version"], timeout=30.0)
        except (OSError, CommandTimeoutError):
            return DeployCliStatus(installed=False, authenticated=False)
        if version.exit_code != 0:
            return DeployCliStatus(installed=False, authenticated=False)

        try:
            whoami = await adapter.run(
                self.cli,
                args=["whoami", *self._auth_args()],
                env=self._env(),
                timeout=30.0,
            )
        except CommandTimeoutError:
            return DeployCliStatus(installed=True, authenticated=False)
        if whoami.exit_code != 0:
            return DeployCliStatus(installed=True, authenticated=False)
        return DeployCliStatus(installed=True, authenticated=True, user=whoami.stdout.strip())
