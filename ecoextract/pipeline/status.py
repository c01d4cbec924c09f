"""
Stage status model and the run/skip decision.

Persisted status text maps onto a closed variant:

    NULL / ""                   -> UNSET
    "completed"                 -> COMPLETED
    "Desync detected: ..."      -> DESYNC
    anything else               -> FAILED (the text is the failure message)

decide() is a pure function over that variant, the stage's data predicate,
the forcing directive and the cascade flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from ecoextract.infra.errors import ConfigurationError


COMPLETED = "completed"
SKIPPED = "skipped"
DESYNC_PREFIX = "Desync detected: "


class StageName(str, Enum):
    OCR = "ocr"
    METADATA = "metadata"
    EXTRACTION = "extraction"
    REFINEMENT = "refinement"


# Status-gated stages in pipeline order; refinement is opt-in and outside the cascade
GATED_STAGES: Tuple[StageName, ...] = (StageName.OCR, StageName.METADATA, StageName.EXTRACTION)

CASCADE: Dict[StageName, Tuple[StageName, ...]] = {
    StageName.OCR: (StageName.METADATA, StageName.EXTRACTION),
    StageName.METADATA: (StageName.EXTRACTION,),
    StageName.EXTRACTION: (),
    StageName.REFINEMENT: (),
}

FAILURE_PREFIXES: Dict[StageName, str] = {
    StageName.OCR: "OCR failed: ",
    StageName.METADATA: "Metadata extraction failed: ",
    StageName.EXTRACTION: "Extraction failed: ",
    StageName.REFINEMENT: "Refinement failed: ",
}


class StatusKind(str, Enum):
    UNSET = "unset"
    COMPLETED = "completed"
    FAILED = "failed"
    DESYNC = "desync"


@dataclass(frozen=True)
class StageStatus:
    kind: StatusKind
    message: Optional[str] = None

    @classmethod
    def unset(cls) -> "StageStatus":
        return cls(StatusKind.UNSET)

    @classmethod
    def completed(cls) -> "StageStatus":
        return cls(StatusKind.COMPLETED)

    @classmethod
    def failed(cls, stage: StageName, error: Any) -> "StageStatus":
        return cls(StatusKind.FAILED, f"{FAILURE_PREFIXES[stage]}{error}")

    @classmethod
    def desync(cls, stage: StageName) -> "StageStatus":
        return cls(
            StatusKind.DESYNC,
            f"{DESYNC_PREFIX}{stage.value} status was completed but its data is missing",
        )

    @classmethod
    def from_db(cls, value: Optional[str]) -> "StageStatus":
        if value is None or value == "":
            return cls.unset()
        if value == COMPLETED:
            return cls.completed()
        if value.startswith(DESYNC_PREFIX):
            return cls(StatusKind.DESYNC, value)
        return cls(StatusKind.FAILED, value)

    def to_db(self) -> Optional[str]:
        if self.kind == StatusKind.UNSET:
            return None
        if self.kind == StatusKind.COMPLETED:
            return COMPLETED
        return self.message

    @property
    def is_completed(self) -> bool:
        return self.kind == StatusKind.COMPLETED


class ForceDirective(ABC):
    """Which documents a stage is forced to re-run for.

    Closed set: NoForce, ForceAll, ForceSpecific(ids). Build from user input
    with ForceDirective.parse(); anything ambiguous is a configuration error.
    """

    @abstractmethod
    def applies_to(self, document_id: int) -> bool:
        pass

    @staticmethod
    def parse(value: Any, option: str = "force") -> "ForceDirective":
        """
        None / False -> NoForce; True -> ForceAll; iterable of ints -> ForceSpecific.

        Raises:
            ConfigurationError: Strings, booleans inside a collection, or
                non-integer ids
        """
        if isinstance(value, ForceDirective):
            return value
        if value is None or value is False:
            return NO_FORCE
        if value is True:
            return FORCE_ALL
        if isinstance(value, int):
            return ForceSpecific(frozenset([value]))
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise ConfigurationError(
                f"{option}: expected True, None, or a collection of document ids, got {value!r}"
            )

        ids = []
        for item in value:
            if isinstance(item, bool) or not isinstance(item, int):
                raise ConfigurationError(
                    f"{option}: document ids must be integers, got {item!r}"
                )
            ids.append(item)
        return ForceSpecific(frozenset(ids))


class NoForce(ForceDirective):
    def applies_to(self, document_id: int) -> bool:
        return False

    def __repr__(self):
        return "NoForce()"


class ForceAll(ForceDirective):
    def applies_to(self, document_id: int) -> bool:
        return True

    def __repr__(self):
        return "ForceAll()"


@dataclass(frozen=True)
class ForceSpecific(ForceDirective):
    document_ids: FrozenSet[int] = frozenset()

    def applies_to(self, document_id: int) -> bool:
        return document_id in self.document_ids


NO_FORCE = NoForce()
FORCE_ALL = ForceAll()


class Action(str, Enum):
    RUN = "run"
    SKIP = "skip"


@dataclass(frozen=True)
class StageDecision:
    action: Action
    reason: str
    status_to_record: Optional[StageStatus] = None

    @property
    def should_run(self) -> bool:
        return self.action == Action.RUN


def decide(
    stage: StageName,
    status: StageStatus,
    data_exists: Optional[bool],
    force: ForceDirective,
    document_id: int,
    upstream_ran: bool,
) -> StageDecision:
    """
    Decide whether a status-gated stage runs for a document.

    data_exists is None for stages without a data check (extraction, where
    zero records is a legitimate result). A desync decision carries the
    status to persist before the re-run.
    """
    if force.applies_to(document_id):
        return StageDecision(Action.RUN, "forced")
    if upstream_ran:
        return StageDecision(Action.RUN, "upstream stage ran")
    if not status.is_completed:
        return StageDecision(Action.RUN, f"status is {status.kind.value}")
    if data_exists is False:
        return StageDecision(Action.RUN, "desync", StageStatus.desync(stage))
    return StageDecision(Action.SKIP, "already completed")


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def ocr_data_exists(document: Mapping[str, Any]) -> bool:
    return _has_value(document.get("document_content"))


def metadata_data_exists(document: Mapping[str, Any]) -> bool:
    return any(
        _has_value(document.get(name))
        for name in ("title", "first_author_lastname", "publication_year")
    )


@dataclass
class StageOutcome:
    """What happened to one document in one pass, threaded stage to stage.

    ran holds the gated stages that executed in this pass; a downstream stage
    consults it for the cascade instead of any shared state.
    """
    document_id: int
    ran: FrozenSet[StageName] = frozenset()
    statuses: Dict[StageName, str] = field(default_factory=dict)
    failed: bool = False

    def upstream_ran(self, stage: StageName) -> bool:
        return any(stage in CASCADE[done] for done in self.ran)

    def with_result(self, stage: StageName, status: str, ran: bool) -> "StageOutcome":
        return StageOutcome(
            document_id=self.document_id,
            ran=self.ran | {stage} if ran else self.ran,
            statuses={**self.statuses, stage: status},
            failed=self.failed or (status not in (COMPLETED, SKIPPED)),
        )
