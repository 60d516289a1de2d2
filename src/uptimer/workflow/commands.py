"""Builders for individual ``cf`` CLI invocations."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..executor import CommandSpec


@dataclass(slots=True, frozen=True)
class CfCommandGenerator:
    """Produce ``cf`` commands bound to an isolated ``CF_HOME``.

    Each actor (setup, every probe, teardown) gets its own generator so that
    their CLI sessions never share a token file.
    """

    cf_home: Path
    cf_bin: str = "cf"

    def _cmd(self, *args: str, sensitive: bool = False) -> CommandSpec:
        return CommandSpec(
            program=self.cf_bin,
            args=tuple(args),
            env={"CF_HOME": str(self.cf_home)},
            sensitive=sensitive,
        )

    def api(self, url: str, *, skip_ssl_validation: bool = True) -> CommandSpec:
        """Target the API endpoint."""
        if skip_ssl_validation:
            return self._cmd("api", url, "--skip-ssl-validation")
        return self._cmd("api", url)

    def auth(self, user: str, password: str) -> CommandSpec:
        """Authenticate; the password is masked when the command is printed."""
        return self._cmd("auth", user, password, sensitive=True)

    def create_org(self, org: str) -> CommandSpec:
        """Create an organization."""
        return self._cmd("create-org", org)

    def create_space(self, org: str, space: str) -> CommandSpec:
        """Create a space inside *org*."""
        return self._cmd("create-space", space, "-o", org)

    def create_quota(self, quota: str) -> CommandSpec:
        """Create a quota generous enough for the sample apps and TCP routes."""
        return self._cmd(
            "create-quota",
            quota,
            "-m",
            "10G",
            "-r",
            "1000",
            "-s",
            "100",
            "--reserved-route-ports",
            "20",
        )

    def set_quota(self, org: str, quota: str) -> CommandSpec:
        """Assign *quota* to *org*."""
        return self._cmd("set-quota", org, quota)

    def target(self, org: str, space: str) -> CommandSpec:
        """Target *org* and *space*."""
        return self._cmd("target", "-o", org, "-s", space)

    def push(self, app: str, app_path: Path) -> CommandSpec:
        """Push the app found at *app_path* using its bundled manifest."""
        return self._cmd(
            "push",
            app,
            "-p",
            str(app_path),
            "-f",
            str(app_path / "manifest.yml"),
        )

    def delete(self, app: str) -> CommandSpec:
        """Delete *app* and its routes."""
        return self._cmd("delete", app, "-f", "-r")

    def recent_logs(self, app: str) -> CommandSpec:
        """Dump the recent logs of *app*."""
        return self._cmd("logs", app, "--recent")

    def stream_logs(self, app: str) -> CommandSpec:
        """Tail the logs of *app*; runs until killed."""
        return self._cmd("logs", app)

    def map_route(self, app: str, domain: str, port: int) -> CommandSpec:
        """Map a TCP route to *app*."""
        return self._cmd("map-route", app, domain, "--port", str(port))

    def create_user_provided_service(self, service: str, syslog_url: str) -> CommandSpec:
        """Create a user-provided service acting as a syslog drain."""
        return self._cmd("create-user-provided-service", service, "-l", syslog_url)

    def bind_service(self, app: str, service: str) -> CommandSpec:
        """Bind *service* to *app*."""
        return self._cmd("bind-service", app, service)

    def restage(self, app: str) -> CommandSpec:
        """Restage *app* so new bindings take effect."""
        return self._cmd("restage", app)

    def delete_org(self, org: str) -> CommandSpec:
        """Delete *org* and everything in it."""
        return self._cmd("delete-org", org, "-f")

    def delete_quota(self, quota: str) -> CommandSpec:
        """Delete *quota*."""
        return self._cmd("delete-quota", quota, "-f")

    def logout(self) -> CommandSpec:
        """Log out of the CLI session."""
        return self._cmd("logout")


__all__ = ["CfCommandGenerator"]
