"""
Output CSV table descriptors.

An export writes one main table plus one table per repeat group. Each
``Csv`` knows its header, where it goes, how rows are ordered and how to
turn a submission into rows.
"""

import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import List, Optional

from ..config_manager import ExportConfiguration
from ..core.form_definition import FormDefinition
from ..core.model import Model
from ..utils.files import strip_illegal_chars
from .csv_lines import CsvLines
from .field_mappers import AuditWriter
from .submission_mappers import SubmissionMapper, main_header, main_mapper, repeat_header, repeat_mapper

logger = logging.getLogger(__name__)


class Csv:
    """One output table."""

    def __init__(
        self,
        model_fqn: str,
        header: str,
        output: Path,
        sorted_output: bool,
        overwrite: bool,
        mapper: SubmissionMapper,
    ):
        self.model_fqn = model_fqn
        self.header = header
        self.output = Path(output)
        self.sorted_output = sorted_output
        self.overwrite = overwrite
        self.mapper = mapper

    @classmethod
    def main(
        cls,
        form: FormDefinition,
        configuration: ExportConfiguration,
        audit_writer: Optional[AuditWriter] = None,
        media_lock=None,
    ) -> "Csv":
        output = configuration.export_dir / f"{configuration.filename_base(form.form_name)}.csv"
        return cls(
            form.model.fqn(),
            main_header(form.model, form.is_encrypted, configuration),
            output,
            True,
            configuration.overwrite_files,
            main_mapper(form, configuration, audit_writer, media_lock),
        )

    @classmethod
    def repeat(
        cls,
        form: FormDefinition,
        group: Model,
        configuration: ExportConfiguration,
        output: Path,
        audit_writer: Optional[AuditWriter] = None,
        media_lock=None,
    ) -> "Csv":
        return cls(
            group.fqn(),
            repeat_header(group, configuration),
            output,
            False,
            configuration.overwrite_files,
            repeat_mapper(form, group, configuration, audit_writer, media_lock),
        )

    @classmethod
    def get_csvs(
        cls,
        form: FormDefinition,
        configuration: ExportConfiguration,
        audit_writer: Optional[AuditWriter] = None,
        media_lock=None,
    ) -> List["Csv"]:
        """Build the main table plus one table per repeat group.

        Repeat groups sharing a name get "~1", "~2"... suffixes, in form order.
        """
        media_lock = media_lock or threading.Lock()
        csvs = [cls.main(form, configuration, audit_writer, media_lock)]

        groups_by_name = OrderedDict()
        for group in form.repeatable_fields():
            groups_by_name.setdefault(group.name, []).append(group)

        base = configuration.filename_base(form.form_name)
        for name, groups in groups_by_name.items():
            for sequence, group in enumerate(groups, start=1):
                suffix = strip_illegal_chars(name) if len(groups) == 1 else f"{strip_illegal_chars(name)}~{sequence}"
                output = configuration.export_dir / f"{base}-{suffix}.csv"
                csvs.append(cls.repeat(form, group, configuration, output, audit_writer, media_lock))
        return csvs

    def prepare_output_files(self) -> None:
        """Create (or truncate) the file with its header unless it exists and overwriting is off."""
        if not self.output.exists() or self.overwrite:
            self.output.parent.mkdir(parents=True, exist_ok=True)
            with open(self.output, "w", encoding="utf-8", newline="") as f:
                f.write(self.header + "\n")

    def append_lines(self, csv_lines: CsvLines) -> None:
        lines = csv_lines.sorted() if self.sorted_output else csv_lines.unsorted()
        with open(self.output, "a", encoding="utf-8", newline="") as f:
            for line in lines:
                f.write(line + "\n")
        logger.info(f"Wrote {len(lines)} row(s) to {self.output.name}")

    def __repr__(self) -> str:
        return f"Csv({self.model_fqn!r}, {self.output.name!r})"
