"""
Submission to CSV row mapping for the main table and the repeat tables.
"""

from typing import Callable, Optional

from ..config_manager import ExportConfiguration
from ..core.form_definition import FormDefinition
from ..core.model import Model
from ..parsing.submission import Submission
from .csv_lines import CsvLines
from .encoding import encode, encode_main_value, encode_repeat_value, format_date_time
from .field_mappers import AuditWriter, MappingContext, map_field

SubmissionMapper = Callable[[Submission], CsvLines]


def main_header(model: Model, is_encrypted: bool, configuration: ExportConfiguration) -> str:
    names = ["SubmissionDate"]
    for field in model.children():
        names.extend(field.names(0, configuration.split_select_multiples, configuration.remove_group_names))
    names.append("KEY")
    if is_encrypted:
        names.append("isValidated")
    return ",".join(names)


def repeat_header(group: Model, configuration: ExportConfiguration) -> str:
    shift = group.count_ancestors()
    names = []
    for field in group.children():
        names.extend(field.names(shift, configuration.split_select_multiples, configuration.remove_group_names))
    names.extend(["PARENT_KEY", "KEY", f"SET-OF-{group.name}"])
    return ",".join(names)


def _context(form, configuration, submission, audit_writer, media_lock) -> MappingContext:
    context = MappingContext(form.form_name, configuration, submission.working_dir, audit_writer)
    if media_lock is not None:
        context.media_lock = media_lock
    return context


def main_mapper(
    form: FormDefinition,
    configuration: ExportConfiguration,
    audit_writer: Optional[AuditWriter] = None,
    media_lock=None,
) -> SubmissionMapper:
    """Build the mapper producing one main table row per submission.

    Args:
        form: Form being exported
        configuration: Export configuration
        audit_writer: Shared audit CSV writer, for forms with an audit field
        media_lock: Lock shared by every mapper copying media files
    """
    model = form.model

    def mapper(submission: Submission) -> CsvLines:
        context = _context(form, configuration, submission, audit_writer, media_lock)
        instance_id = submission.get_instance_id(form.has_repeatable_fields())
        submission_date = submission.submission_date

        cols = [encode(format_date_time(submission_date) if submission_date else None, False)]
        for field in model.children():
            element = submission.find_element(field.name)
            for column in map_field(context, instance_id, field, element):
                cols.append(encode_main_value(field, column))
        cols.append(encode(instance_id, False))
        if form.is_encrypted:
            cols.append(submission.validation_status.as_csv_value())

        return CsvLines.of(model.fqn(), instance_id, submission.submission_date_or_min(), ",".join(cols))

    return mapper


def repeat_mapper(
    form: FormDefinition,
    group: Model,
    configuration: ExportConfiguration,
    audit_writer: Optional[AuditWriter] = None,
    media_lock=None,
) -> SubmissionMapper:
    """Build the mapper producing one row per instance of a repeat group."""
    group_fqn = group.fqn()

    def mapper(submission: Submission) -> CsvLines:
        context = _context(form, configuration, submission, audit_writer, media_lock)
        instance_id = submission.get_instance_id(True)
        lines = []
        for element in submission.elements(group_fqn):
            row_id = element.current_local_id(group, instance_id)
            cols = []
            for field in group.children():
                child_element = element.find_element(field.name)
                for column in map_field(context, row_id, field, child_element):
                    cols.append(encode_repeat_value(column))
            cols.append(encode(element.parent_local_id(group, instance_id), False))
            cols.append(encode(row_id, False))
            cols.append(encode(element.group_local_id(group, instance_id), False))
            lines.append(",".join(cols))
        return CsvLines.of_many(group_fqn, instance_id, submission.submission_date_or_min(), lines)

    return mapper
