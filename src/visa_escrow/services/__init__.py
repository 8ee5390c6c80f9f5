"""Application services — workflow orchestration."""

from visa_escrow.services.context import WorkflowContext, build_context
from visa_escrow.services.gateway import WorkflowGateway, to_error_body
from visa_escrow.services.locks import CaseLockRegistry
from visa_escrow.services.payment_service import SimulatedPaymentProvider
from visa_escrow.services.workflow_engine import CaseView, Timeline, WorkflowEngine

__all__ = [
    "CaseLockRegistry",
    "CaseView",
    "SimulatedPaymentProvider",
    "Timeline",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowGateway",
    "build_context",
    "to_error_body",
]
