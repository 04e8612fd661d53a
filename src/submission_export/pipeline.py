"""
Export orchestrator.

Runs one export of a form: validates the configuration, selects the
submissions to export, maps them into CSV rows on a worker pool, writes
every table and reports how it went through export events.
"""

import itertools
import logging
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config_manager import ExportConfiguration
from .core.form_definition import FormDefinition
from .crypto.keys import load_private_key
from .errors import SubmissionError
from .export.csv_lines import CsvLines
from .export.csv_output import Csv
from .export.field_mappers import AuditWriter
from .export.geojson_exporter import GeoJSONExporter, SpatialFeature, features_for
from .parsing.submission_parser import list_submission_files, parse_submission
from .state.state_store import ExportStateStore

logger = logging.getLogger(__name__)

STATE_DB_FILENAME = ".submission-export-state.db"


class ExportStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class ExportOutcome(str, Enum):
    ALL_EXPORTED = "ALL_EXPORTED"
    SOME_SKIPPED = "SOME_SKIPPED"
    ALL_SKIPPED = "ALL_SKIPPED"


class ExportEventType(str, Enum):
    START = "START"
    PROGRESS = "PROGRESS"
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILURE = "FAILURE"
    END = "END"


@dataclass(frozen=True)
class ExportEvent:
    """Something that happened during an export, for progress reporting."""
    type: ExportEventType
    form_id: str
    message: str = ""
    processed: int = 0
    total: int = 0

    @property
    def percentage(self) -> float:
        return 100.0 * self.processed / self.total if self.total else 100.0


EventCallback = Callable[[ExportEvent], None]


@dataclass
class ExportResult:
    """Result of one export run."""
    form_id: str
    status: ExportStatus
    outcome: Optional[ExportOutcome] = None
    total_submissions: int = 0
    exported_submissions: int = 0
    output_files: List[Path] = field(default_factory=list)
    total_time_ms: int = 0
    start_time: str = ""
    end_time: str = ""

    @property
    def skipped_submissions(self) -> int:
        return self.total_submissions - self.exported_submissions

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "form_id": self.form_id,
            "status": self.status.value,
            "outcome": self.outcome.value if self.outcome else None,
            "total_submissions": self.total_submissions,
            "exported_submissions": self.exported_submissions,
            "skipped_submissions": self.skipped_submissions,
            "output_files": [str(path) for path in self.output_files],
            "total_time_ms": self.total_time_ms,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


def classify_outcome(total: int, exported: int) -> ExportOutcome:
    if exported == total:
        return ExportOutcome.ALL_EXPORTED
    if exported == 0:
        return ExportOutcome.ALL_SKIPPED
    return ExportOutcome.SOME_SKIPPED


# (csv lines by table FQN, spatial features), or None when the submission was skipped
WorkerResult = Optional[Tuple[Dict[str, CsvLines], List[SpatialFeature]]]


class ExportPipeline:
    """Exports the submissions of one form to CSV (and optionally GeoJSON)."""

    def __init__(
        self,
        form: FormDefinition,
        configuration: ExportConfiguration,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        state_store: Optional[ExportStateStore] = None,
    ):
        """Initialize export pipeline.

        Args:
            form: Form to export, with its form dir set
            configuration: Export configuration
            on_event: Callback receiving export events
            cancel_event: Set it to stop the export before the next submission starts
            state_store: Store for smart append bookmarks (created on demand when missing)
        """
        self.form = form
        self.configuration = configuration
        self.on_event = on_event
        self.cancel_event = cancel_event or threading.Event()
        self.state_store = state_store
        self.status = ExportStatus.NOT_STARTED

        self._private_key = None
        self._error_counter = itertools.count(1)
        self._error_lock = threading.Lock()

    def run(self) -> ExportResult:
        """Run the export.

        Returns:
            ExportResult with the status, outcome and written files

        Raises:
            ConfigurationError: If the configuration can't export this form
        """
        start = time.time()
        result = ExportResult(
            form_id=self.form.form_id,
            status=self.status,
            start_time=datetime.now().isoformat(),
        )

        self.configuration.validate_for(self.form.is_encrypted)
        if self.configuration.pem_file is not None:
            self._private_key = load_private_key(self.configuration.pem_file)

        self.status = ExportStatus.RUNNING
        self._emit(ExportEventType.START, f"Exporting form {self.form.form_name}")
        logger.info(f"Exporting form {self.form.form_id} to {self.configuration.export_dir}")

        self.configuration.export_dir.mkdir(parents=True, exist_ok=True)
        self._reset_errors_dir()

        store = self._state_store()
        last_exported = None
        if self.configuration.smart_append and store is not None:
            last_exported = store.last_exported_submission_date(self.form.form_id)
            if last_exported is not None:
                logger.info(f"Appending submissions received after {last_exported.isoformat()}")

        submission_files = list_submission_files(
            self.form.form_dir,
            self.configuration.date_range,
            last_exported,
        )
        total = len(submission_files)
        result.total_submissions = total
        logger.info(f"Found {total} submission(s) to export")

        audit_writer = None
        if self.form.model.has_audit_field():
            audit_writer = AuditWriter(self.configuration.audit_path(self.form.form_name))
            audit_writer.prepare(self.configuration.overwrite_files)

        csvs = Csv.get_csvs(self.form, self.configuration, audit_writer)

        merged: Dict[str, CsvLines] = {}
        features: List[SpatialFeature] = []
        exported = 0
        processed = 0

        with ThreadPoolExecutor(max_workers=self.configuration.max_workers) as executor:
            futures = [executor.submit(self._process, path, csvs) for path in submission_files]
            for future in futures:
                outcome = future.result()
                processed += 1
                if outcome is not None:
                    exported += 1
                    fragments, submission_features = outcome
                    for model_fqn, lines in fragments.items():
                        merged[model_fqn] = merged[model_fqn].merge(lines) if model_fqn in merged else lines
                    features.extend(submission_features)
                if _crossed_tenth(processed, total):
                    self._emit(
                        ExportEventType.PROGRESS,
                        f"Processed {processed} of {total} submission(s)",
                        processed,
                        total,
                    )

        cancelled = self.cancel_event.is_set()
        if cancelled:
            logger.warning(f"Export of form {self.form.form_id} cancelled after exporting {exported} submission(s)")

        # A cancelled export with nothing to add leaves the previous files untouched
        if not cancelled or exported > 0:
            self._write_outputs(csvs, audit_writer, merged, features, result)

        outcome = classify_outcome(total, exported)
        result.outcome = outcome

        if store is not None and not cancelled:
            main_lines = merged.get(self.form.model.fqn())
            last_line = main_lines.last_line if main_lines is not None else None
            store.record_export(
                self.form.form_id,
                outcome.value,
                last_line.submission_date if last_line is not None else None,
            )

        self.status = ExportStatus.ABORTED if cancelled else ExportStatus.COMPLETED
        if outcome == ExportOutcome.ALL_EXPORTED:
            self._emit(ExportEventType.SUCCESS, f"Exported {exported} submission{_plural(exported)}", exported, total)
        elif outcome == ExportOutcome.SOME_SKIPPED:
            self._emit(
                ExportEventType.PARTIAL_SUCCESS,
                f"Exported {exported} from {total} submission{_plural(total)}",
                exported,
                total,
            )
        else:
            self._emit(ExportEventType.FAILURE, "All submissions have been skipped", exported, total)
        self._emit(ExportEventType.END, "Export cancelled" if cancelled else "Export finished", exported, total)

        return self._finish(result, start, exported)

    def _write_outputs(
        self,
        csvs: List[Csv],
        audit_writer: Optional[AuditWriter],
        merged: Dict[str, CsvLines],
        features: List[SpatialFeature],
        result: ExportResult,
    ) -> None:
        """Write every table (header first when needed), the audit file and the GeoJSON file."""
        for csv in csvs:
            csv.prepare_output_files()
            csv.append_lines(merged.get(csv.model_fqn, CsvLines.empty()))
            result.output_files.append(csv.output)
        if audit_writer is not None:
            audit_writer.finish()
            result.output_files.append(audit_writer.path)

        if self.configuration.include_geojson_export:
            exporter = GeoJSONExporter(self.configuration.export_dir)
            base = self.configuration.filename_base(self.form.form_name)
            result.output_files.append(exporter.export_features(features, f"{base}.geojson"))

    def _process(self, path: Path, csvs: List[Csv]) -> WorkerResult:
        """Parse one submission and map it through every table's mapper."""
        if self.cancel_event.is_set():
            return None

        submission = parse_submission(path, self.form.is_encrypted, self._private_key, self._on_submission_error)
        if submission is None:
            return None

        try:
            if self.form.has_repeatable_fields() and submission.instance_id is None:
                logger.warning(f"Skipping submission {path}: an instance ID is required for forms with repeat groups")
                self._on_submission_error(path, "missing instance ID")
                return None

            try:
                fragments = {csv.model_fqn: csv.mapper(submission) for csv in csvs}
                spatial = []
                if self.configuration.include_geojson_export:
                    spatial = features_for(submission, self.form.spatial_fields())
            except (SubmissionError, OSError, ValueError) as e:
                # ValueError covers undecodable media such as audit logs
                logger.warning(f"Skipping submission {path}: {e}")
                self._on_submission_error(path, str(e))
                return None
            return fragments, spatial
        finally:
            submission.cleanup()

    def _reset_errors_dir(self) -> None:
        errors_dir = self.configuration.errors_dir(self.form.form_name)
        if errors_dir.exists():
            shutil.rmtree(errors_dir)

    def _on_submission_error(self, path: Path, reason: str) -> None:
        """Copy a failing submission file into the errors dir."""
        errors_dir = self.configuration.errors_dir(self.form.form_name)
        with self._error_lock:
            errors_dir.mkdir(parents=True, exist_ok=True)
            target = errors_dir / f"failed_submission_{next(self._error_counter)}.xml"
            try:
                shutil.copyfile(path, target)
            except OSError as e:
                logger.error(f"Can't copy failed submission {path} to {target}: {e}")
                return
        logger.info(f"Copied failed submission {path} ({reason}) to {target.name}")

    def _state_store(self) -> Optional[ExportStateStore]:
        if self.state_store is not None:
            return self.state_store
        if not self.configuration.smart_append and self.configuration.state_db_path is None:
            return None
        db_path = self.configuration.state_db_path or self.configuration.export_dir / STATE_DB_FILENAME
        self.state_store = ExportStateStore(db_path)
        return self.state_store

    def _emit(self, event_type: ExportEventType, message: str = "", processed: int = 0, total: int = 0) -> None:
        if self.on_event is not None:
            self.on_event(ExportEvent(event_type, self.form.form_id, message, processed, total))

    def _finish(self, result: ExportResult, start: float, exported: int) -> ExportResult:
        result.status = self.status
        result.exported_submissions = exported
        result.total_time_ms = int((time.time() - start) * 1000)
        result.end_time = datetime.now().isoformat()
        return result


def _crossed_tenth(processed: int, total: int) -> bool:
    """True when ``processed`` just reached another 10% of ``total``."""
    if total == 0:
        return False
    return processed * 10 // total > (processed - 1) * 10 // total


def _plural(count: int) -> str:
    return "" if count == 1 else "s"
