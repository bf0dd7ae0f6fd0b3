"""
Run Status — Aggregation

Tracks which plugin results of a distributed run have arrived, derives
the overall run status, and publishes it as an annotation on the
aggregator pod.

Usage:
    from aggregation import Updater, StatusPublisher, ExpectedResult

    updater = Updater(
        [ExpectedResult("node-1", "e2e"), ExpectedResult("node-2", "systemd-logs")],
        namespace="heptio-sonobuoy",
        publisher=StatusPublisher(client),
    )
    updater.publish(results)
"""

from aggregation.types import (
    ExpectedResult,
    PluginResult,
    PluginStatus,
    Status,
    StatusEncodingError,
    UnitKey,
    UnitState,
)
from aggregation.policy import derive_overall_state, fail_fast, get_policy
from aggregation.locator import (
    DEFAULT_STATUS_POD_NAME,
    STATUS_POD_LABEL,
    LocatorError,
    NoTargetWithLabelError,
    PodLocator,
    resolve_target_name,
)
from aggregation.publisher import (
    STATUS_ANNOTATION_NAME,
    PublishError,
    StatusNotFound,
    StatusPublisher,
    get_patch,
    get_status,
)
from aggregation.updater import DuplicateUnitError, UnitNotFoundError, Updater
from aggregation.reporter import StatusReporter
