from .status import (
    StageName,
    StageStatus,
    StatusKind,
    ForceDirective,
    NoForce,
    ForceAll,
    ForceSpecific,
    StageDecision,
    StageOutcome,
    Action,
    decide,
    CASCADE,
)
from .orchestrator import DocumentResult, StageOrchestrator
from .runner import PipelineSummary, process_documents, collect_pdfs

__all__ = [
    "StageName",
    "StageStatus",
    "StatusKind",
    "ForceDirective",
    "NoForce",
    "ForceAll",
    "ForceSpecific",
    "StageDecision",
    "StageOutcome",
    "Action",
    "decide",
    "CASCADE",
    "DocumentResult",
    "StageOrchestrator",
    "PipelineSummary",
    "process_documents",
    "collect_pdfs",
]
