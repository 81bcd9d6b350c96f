from kiln.workload.driver import (
    BuildOptions,
    BuildSummary,
    WorkloadBuildResult,
    WorkloadDriver,
    discover_workloads,
    workload_context,
)

__all__ = [
    "BuildOptions",
    "BuildSummary",
    "WorkloadBuildResult",
    "WorkloadDriver",
    "discover_workloads",
    "workload_context",
]
