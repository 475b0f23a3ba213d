"""Services for the production kernel (write side)."""

from production_kernel.services.dispatch_service import DispatchService
from production_kernel.services.finished_goods_service import FinishedGoodsService
from production_kernel.services.job_completion_service import JobCompletionService
from production_kernel.services.machine_allocation_service import MachineAllocationService
from production_kernel.services.planning_service import PlanningService
from production_kernel.services.step_detail_service import StepDetailService
from production_kernel.services.step_state_service import StepStateService, step_record

__all__ = [
    "DispatchService",
    "FinishedGoodsService",
    "JobCompletionService",
    "MachineAllocationService",
    "PlanningService",
    "StepDetailService",
    "StepStateService",
    "step_record",
]
