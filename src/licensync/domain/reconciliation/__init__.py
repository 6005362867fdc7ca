"""License reconciliation between the internal store and the partner mirror."""

from __future__ import annotations

from .engine import EngineOptions, LicenseSyncEngine, SyncRunSummary
from .errors import (
    BatchFatalError,
    ItemSyncError,
    PlannerSafetyLimitReached,
    SyncError,
    TransientStoreError,
)
from .execute import BatchExecutor, ExecutionReport, OperationFailure
from .gaps import FIELD_RULES, FieldRule, GapAnalysis, analyze_gaps
from .keys import generate_license_key
from .lookup import LookupIndex, build_lookup_index
from .merge import build_internal_record, build_update_patch
from .plan import (
    NO_MATCH_REASON,
    CreateOperation,
    PlanOptions,
    PlanStats,
    SyncOperation,
    SyncPlan,
    UpdateOperation,
    plan_comprehensive_sync,
    plan_legacy_sync,
)
from .status import (
    MirrorFailure,
    MirrorReport,
    SingleSyncResult,
    SyncStatusTracker,
    deduplicate_by_appid,
    mirror_external_records,
    retry_pending,
    sync_one,
)

__all__ = [
    "FIELD_RULES",
    "NO_MATCH_REASON",
    "BatchExecutor",
    "BatchFatalError",
    "CreateOperation",
    "EngineOptions",
    "ExecutionReport",
    "FieldRule",
    "GapAnalysis",
    "ItemSyncError",
    "LicenseSyncEngine",
    "LookupIndex",
    "MirrorFailure",
    "MirrorReport",
    "OperationFailure",
    "PlanOptions",
    "PlanStats",
    "PlannerSafetyLimitReached",
    "SingleSyncResult",
    "SyncError",
    "SyncOperation",
    "SyncPlan",
    "SyncRunSummary",
    "SyncStatusTracker",
    "TransientStoreError",
    "UpdateOperation",
    "analyze_gaps",
    "build_internal_record",
    "build_lookup_index",
    "build_update_patch",
    "deduplicate_by_appid",
    "generate_license_key",
    "mirror_external_records",
    "plan_comprehensive_sync",
    "plan_legacy_sync",
    "retry_pending",
    "sync_one",
]
