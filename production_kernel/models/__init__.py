"""ORM models for the production workflow."""

from production_kernel.models.completed_job import CompletedJob
from production_kernel.models.finished_goods import FinishedGoodsConsumption, FinishedGoodsEntry
from production_kernel.models.job import Job, PurchaseOrder
from production_kernel.models.machine import Machine
from production_kernel.models.machine_claim import MachineClaim
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.models.step_detail import (
    DispatchHistoryEntry,
    DispatchProcessRecord,
    StepDetailRecord,
)

__all__ = [
    "CompletedJob",
    "DispatchHistoryEntry",
    "DispatchProcessRecord",
    "FinishedGoodsConsumption",
    "FinishedGoodsEntry",
    "Job",
    "JobPlanning",
    "JobStep",
    "Machine",
    "MachineClaim",
    "PurchaseOrder",
    "StepDetailRecord",
]
