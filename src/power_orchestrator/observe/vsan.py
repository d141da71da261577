"""
vSAN observations.

The vSAN health and object systems live behind a separate SOAP endpoint on
vCenter (/vsanHealth). We bind a second stub to it that reuses the cookie of
the already authenticated vCenter session, the same way the vSAN management
SDK helpers do.

Right after a cold boot the vSAN health service may not be initialized.
Failures to reach it raise BackendNotReady, which health gates retry under
their own budget.
"""

from __future__ import annotations

import http.client
import ssl
from dataclasses import dataclass
from typing import Any

from pyVmomi import SoapStubAdapter, vim, vmodl

from power_orchestrator.core.errors import BackendNotReady
from power_orchestrator.core.types import HealthGroup, HealthSeverity
from power_orchestrator.observe.vsphere import find_cluster
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.vsphere import VsphereSession

VSAN_HEALTH_PATH = "/vsanHealth"
VSAN_API_VERSION = "vim.version.version11"


def map_severity(raw: Any) -> HealthSeverity:
    try:
        return HealthSeverity(str(raw).lower())
    except ValueError:
        return HealthSeverity.unknown


@dataclass
class VsanClient:
    """
    Client for the vSAN health and object systems of one vCenter session.

    version
    API version requested from the vSAN endpoint.
    """

    session: VsphereSession
    version: str = VSAN_API_VERSION
    verify_ssl: bool = False

    def _stub(self) -> Any:
        context = ssl.create_default_context()
        if not self.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        stub = SoapStubAdapter(
            host=self.session.host,
            path=VSAN_HEALTH_PATH,
            version=self.version,
            sslContext=context,
        )
        stub.cookie = self.session.service_instance._stub.cookie
        return stub

    def health_groups(self, cluster_obj: Any) -> list[HealthGroup]:
        system = vim.cluster.VsanVcClusterHealthSystem("vsan-cluster-health-system", self._stub())
        summary = system.VsanQueryVcClusterHealthSummary(
            cluster=cluster_obj,
            includeObjUuids=False,
            fetchFromCache=False,
        )
        return [
            HealthGroup(name=str(group.groupName), severity=map_severity(group.groupHealth))
            for group in summary.groups or []
        ]

    def resyncing_object_count(self, cluster_obj: Any) -> int:
        system = vim.cluster.VsanObjectSystem("vsan-cluster-object-system", self._stub())
        summary = system.VsanQuerySyncingVsanObjectsSummary(
            cluster=cluster_obj,
            syncingObjectsFilter=vim.vsan.host.VsanSyncingObjectFilter(
                resyncType="all",
                resyncStatus="active",
            ),
        )
        return int(summary.totalObjectsToSync or 0)


def _backend_call(cluster: str, what: str, call: Any) -> Any:
    try:
        return call()
    except (OSError, http.client.HTTPException) as exc:
        raise BackendNotReady(f"vSAN health service for {cluster} unreachable during {what}: {exc}") from exc
    except vmodl.MethodFault as exc:
        raise BackendNotReady(f"vSAN health service for {cluster} refused {what}: {exc.msg}") from exc


def vsan_health_groups(channel: Channel[VsphereSession], cluster: str) -> list[HealthGroup]:
    cluster_obj = channel.call(lambda content: find_cluster(content, cluster))
    client = VsanClient(channel.session)
    return _backend_call(cluster, "health summary", lambda: client.health_groups(cluster_obj))


def vsan_resyncing_object_count(channel: Channel[VsphereSession], cluster: str) -> int:
    cluster_obj = channel.call(lambda content: find_cluster(content, cluster))
    client = VsanClient(channel.session)
    return _backend_call(cluster, "resync query", lambda: client.resyncing_object_count(cluster_obj))
