import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


STRUCTURED_FIELDS = (
    'document_id',
    'stage',
    'status',
    'model',
    'models_tried',
    'records',
    'duplicates',
    'duration_seconds',
    'error',
)


class FlushingFileHandler(logging.FileHandler):
    """FileHandler that flushes after every emit for real-time log visibility."""
    def emit(self, record):
        super().emit(record)
        self.flush()


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }

        for name in STRUCTURED_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data, default=str)


class PipelineLogger:
    """Logger that writes to a single append-only JSONL file per document.

    Every line carries the document id and the stage that emitted it, so one
    file tells the whole story of a document across passes. File handlers are
    created lazily on first log message to avoid creating empty log files when
    nothing is logged.
    """
    def __init__(
        self,
        document_id: Union[int, str],
        stage: str,
        log_dir: Optional[Path] = None,
        console_output: bool = False,
        json_output: bool = True,
        level: str = "INFO",
        filename: str = None
    ):
        self.document_id = document_id
        self.stage = stage
        self.log_dir = Path(log_dir) if log_dir else None
        self.console_output = console_output
        self.json_output = json_output and log_dir is not None
        self.level = level
        self.filename = filename or f"document_{document_id}.jsonl"

        self._logger = None
        self._initialized = False
        self.log_file = None

    def _ensure_initialized(self):
        if self._initialized:
            return

        logger_name = f"ecoextract.document.{self.document_id}.{self.stage}.{id(self)}"
        self._logger = logging.getLogger(logger_name)
        self._logger.setLevel(getattr(logging, self.level.upper()))
        self._logger.propagate = False

        if self.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
            self._logger.addHandler(console_handler)

        if self.json_output:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            json_file = self.log_dir / self.filename
            json_handler = FlushingFileHandler(json_file, mode='a')
            json_handler.setFormatter(JSONFormatter())
            self._logger.addHandler(json_handler)
            self.log_file = json_file

        if not self._logger.handlers:
            self._logger.addHandler(logging.NullHandler())

        self._initialized = True

    @property
    def logger(self):
        """Get the underlying logger, initializing if needed."""
        self._ensure_initialized()
        return self._logger

    def for_stage(self, stage: str) -> "PipelineLogger":
        """Logger for another stage of the same document (same file)."""
        return PipelineLogger(
            self.document_id,
            stage,
            log_dir=self.log_dir,
            console_output=self.console_output,
            json_output=self.json_output,
            level=self.level,
            filename=self.filename,
        )

    def _log(self, level: str, message: str, **kwargs):
        reserved_params = {}
        for param in ['exc_info', 'stack_info', 'stacklevel', 'extra']:
            if param in kwargs:
                reserved_params[param] = kwargs.pop(param)

        extra = {
            'document_id': self.document_id,
            'stage': self.stage,
            **kwargs
        }
        if 'extra' in reserved_params:
            extra.update(reserved_params.pop('extra'))

        self.logger.log(
            getattr(logging, level.upper()),
            message,
            extra=extra,
            **reserved_params
        )

    def debug(self, message: str, **kwargs):
        self._log('DEBUG', message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log('INFO', message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log('WARNING', message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log('ERROR', message, **kwargs)

    def close(self):
        if self._initialized and self._logger:
            for handler in self._logger.handlers[:]:
                handler.close()
                self._logger.removeHandler(handler)
            self._initialized = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

