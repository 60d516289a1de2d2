"""Cloud Foundry workflow: ordered command sequences for one org/space/app."""
from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from ..config import CfConfig
from ..executor import CommandSpec
from .commands import CfCommandGenerator

IdSource = Callable[[], str]

SYSLOG_DRAIN_SERVICE = "uptimer-syslog-drain"


def default_id_source() -> str:
    """Return a random identifier for ephemeral platform resources."""
    return str(uuid.uuid4())


@dataclass(slots=True, frozen=True)
class CfWorkflow:
    """Produce command sequences against a single org, space and app."""

    cf: CfConfig
    org: str
    space: str
    quota: str
    app_name: str
    app_path: Path

    @property
    def app_url(self) -> str:
        """Return the URL the app is routed at."""
        return f"https://{self.app_name}.{self.cf.app_domain}"

    @property
    def syslog_url(self) -> str:
        """Return the syslog URL of this workflow's app when it acts as a sink."""
        return f"syslog://{self.cf.tcp_domain}:{self.cf.available_port}"

    def with_app_name(self, app_name: str) -> CfWorkflow:
        """Return a copy targeting the same org/space with a different app."""
        return replace(self, app_name=app_name)

    def _login(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        return [
            gen.api(self.cf.api, skip_ssl_validation=self.cf.skip_ssl_validation),
            gen.auth(self.cf.admin_user, self.cf.admin_password),
        ]

    def _login_and_target(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        return [*self._login(gen), gen.target(self.org, self.space)]

    def setup(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Create and target the org, quota and space."""
        return [
            *self._login(gen),
            gen.create_org(self.org),
            gen.create_quota(self.quota),
            gen.set_quota(self.org, self.quota),
            gen.create_space(self.org, self.space),
            gen.target(self.org, self.space),
        ]

    def push(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Push the app."""
        return [*self._login_and_target(gen), gen.push(self.app_name, self.app_path)]

    def delete(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Delete the app."""
        return [*self._login_and_target(gen), gen.delete(self.app_name)]

    def map_route(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Map the configured TCP route to the app."""
        if not self.cf.tcp_domain or self.cf.available_port is None:
            raise ValueError("A TCP domain and port are required to map a TCP route.")
        return [
            *self._login_and_target(gen),
            gen.map_route(self.app_name, self.cf.tcp_domain, self.cf.available_port),
        ]

    def create_and_bind_syslog_drain(
        self,
        gen: CfCommandGenerator,
        syslog_url: str,
    ) -> list[CommandSpec]:
        """Forward this app's logs to *syslog_url*."""
        return [
            *self._login_and_target(gen),
            gen.create_user_provided_service(SYSLOG_DRAIN_SERVICE, syslog_url),
            gen.bind_service(self.app_name, SYSLOG_DRAIN_SERVICE),
            gen.restage(self.app_name),
        ]

    def recent_logs(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Fetch the app's recent logs."""
        return [*self._login_and_target(gen), gen.recent_logs(self.app_name)]

    def stream_logs(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Tail the app's logs; the final step only ends when killed."""
        return [*self._login_and_target(gen), gen.stream_logs(self.app_name)]

    def tear_down(self, gen: CfCommandGenerator) -> list[CommandSpec]:
        """Delete the org and quota, then log out."""
        return [
            *self._login(gen),
            gen.delete_org(self.org),
            gen.delete_quota(self.quota),
            gen.logout(),
        ]


def create_workflow(
    cf: CfConfig,
    app_path: Path,
    id_source: IdSource = default_id_source,
) -> CfWorkflow:
    """Return a workflow with freshly generated resource names."""
    return CfWorkflow(
        cf=cf,
        org=f"uptimer-org-{id_source()}",
        space=f"uptimer-space-{id_source()}",
        quota=f"uptimer-quota-{id_source()}",
        app_name=f"uptimer-app-{id_source()}",
        app_path=app_path,
    )


__all__ = [
    "CfWorkflow",
    "IdSource",
    "SYSLOG_DRAIN_SERVICE",
    "create_workflow",
    "default_id_source",
]
