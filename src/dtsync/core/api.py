"""
Descriptors for the Dynatrace configuration API families.

An `Api` names one family (alerting profiles, management zones, extensions, ...),
knows where its collection endpoint lives and how its list endpoint shapes the
(id, name) summaries. Families that need a different write path declare an
`UpsertStrategy`; the client dispatches on it in exactly one place.

Usage:
    api = get_api("alerting-profile")
    api.url_from_environment_url("https://abc.live.dynatrace.com")
    # -> https://abc.live.dynatrace.com/api/config/v1/alertingProfiles
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .errors import UnsupportedFamilyError

EXTENSION_API_ID = "extension"


class UpsertStrategy(str, Enum):
    STANDARD_JSON = "standard-json"
    EXTENSION_UPLOAD = "extension-upload"


# Families whose write path differs even when the descriptor does not say so.
_FAMILY_STRATEGIES: Dict[str, UpsertStrategy] = {
    EXTENSION_API_ID: UpsertStrategy.EXTENSION_UPLOAD,
}


@dataclass(frozen=True)
class Value:
    """One remote object summary, as returned by a list call."""
    id: str
    name: str


@dataclass(frozen=True)
class DynatraceEntity:
    """Server-confirmed result of a create or update."""
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class Api:
    id: str
    path: str
    list_key: str = "values"
    id_key: str = "id"
    strategy: Optional[UpsertStrategy] = None

    def url_from_environment_url(self, environment_url: str) -> str:
        return f"{environment_url.rstrip('/')}/{self.path.strip('/')}"

    @property
    def upsert_strategy(self) -> UpsertStrategy:
        if self.strategy is not None:
            return self.strategy
        return _FAMILY_STRATEGIES.get(self.id, UpsertStrategy.STANDARD_JSON)


def _api(id: str, path: str, **kw) -> Api:
    return Api(id=id, path=path, **kw)


KNOWN_APIS: Dict[str, Api] = {a.id: a for a in (
    _api("alerting-profile", "/api/config/v1/alertingProfiles"),
    _api("management-zone", "/api/config/v1/managementZones"),
    _api("auto-tag", "/api/config/v1/autoTags"),
    _api("dashboard", "/api/config/v1/dashboards", list_key="dashboards"),
    _api("notification", "/api/config/v1/notifications"),
    _api(EXTENSION_API_ID, "/api/config/v1/extensions", list_key="extensions",
         strategy=UpsertStrategy.EXTENSION_UPLOAD),
    _api("custom-service-java", "/api/config/v1/service/customServices/java"),
    _api("custom-service-dotnet", "/api/config/v1/service/customServices/dotNet"),
    _api("anomaly-detection-metrics", "/api/config/v1/anomalyDetection/metricEvents"),
    _api("synthetic-location", "/api/v1/synthetic/locations", list_key="locations", id_key="entityId"),
    _api("synthetic-monitor", "/api/v1/synthetic/monitors", list_key="monitors", id_key="entityId"),
    _api("application", "/api/config/v1/applications/web"),
    _api("app-detection-rule", "/api/config/v1/applicationDetectionRules"),
    _api("request-attributes", "/api/config/v1/service/requestAttributes"),
    _api("maintenance-window", "/api/config/v1/maintenanceWindows"),
    _api("request-naming-service", "/api/config/v1/service/requestNaming"),
    _api("calculated-metrics-service", "/api/config/v1/calculatedMetrics/service"),
    _api("conditional-naming-host", "/api/config/v1/conditionalNaming/host"),
    _api("conditional-naming-processgroup", "/api/config/v1/conditionalNaming/processGroup"),
    _api("conditional-naming-service", "/api/config/v1/conditionalNaming/service"),
    _api("kubernetes-credentials", "/api/config/v1/kubernetes/credentials"),
    _api("aws-credentials", "/api/config/v1/aws/credentials"),
)}


def get_api(api_id: str) -> Api:
    """Return the registered family descriptor for *api_id*.

    Raises:
        UnsupportedFamilyError: If the family is not registered.
    """
    try:
        return KNOWN_APIS[api_id]
    except KeyError:
        raise UnsupportedFamilyError(
            f"Unknown api '{api_id}'. Known apis: {', '.join(sorted(KNOWN_APIS))}"
        ) from None


def iter_api_ids() -> List[str]:
    return sorted(KNOWN_APIS)
