#!/usr/bin/env python3
"""
Submission Export CLI

Command-line interface for exporting the submissions of a form to CSV.
"""

import argparse
import logging
import sys
import threading
from datetime import date
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .config_manager import ConfigManager, ExportConfiguration
from .core.form_definition import FormDefinition
from .errors import ConfigurationError
from .pipeline import ExportEvent, ExportEventType, ExportOutcome, ExportPipeline

EXIT_OK = 0
EXIT_SKIPPED = 1
EXIT_CONFIGURATION_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="submission-export",
        description="Submission Export - Export form submissions to CSV and GeoJSON files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export every submission of a form
  %(prog)s forms/household --form forms/household/household.xml -o exports

  # Export encrypted submissions received in March 2024
  %(prog)s forms/survey --form survey.xml -o exports --pem keys/private.pem \\
      --start 2024-03-01 --end 2024-03-31

  # Only export submissions received since the last export
  %(prog)s forms/household --form household.xml -o exports --smart-append

  # Use a configuration file (flags override its values)
  %(prog)s forms/household --form household.xml --config export.yaml

  # Write an example configuration file
  %(prog)s --example-config export.yaml
        """
    )

    # Input/Output options
    parser.add_argument(
        'form_dir',
        nargs='?',
        type=Path,
        help='Form directory holding the instances/ folder'
    )
    parser.add_argument(
        '-f', '--form',
        type=Path,
        help='XForm definition file (default: <form_dir>/<form_dir name>.xml)'
    )
    parser.add_argument(
        '-o', '--export-dir',
        type=Path,
        help='Directory for the exported files'
    )
    parser.add_argument(
        '--filename',
        help='Base name of the exported files (default: the form name)'
    )

    # Configuration options
    parser.add_argument(
        '-c', '--config',
        type=Path,
        help='Export configuration YAML file'
    )
    parser.add_argument(
        '--pem',
        type=Path,
        help='PEM file with the private key of encrypted forms'
    )
    parser.add_argument(
        '--start',
        type=date.fromisoformat,
        help='Only export submissions received on or after this date (YYYY-MM-DD)'
    )
    parser.add_argument(
        '--end',
        type=date.fromisoformat,
        help='Only export submissions received on or before this date (YYYY-MM-DD)'
    )
    parser.add_argument(
        '--workers',
        type=int,
        help='Number of worker threads (default: Python\'s thread pool default)'
    )
    parser.add_argument(
        '--state-db',
        type=Path,
        help='Export state database used by --smart-append (default: <export_dir>/.submission-export-state.db)'
    )
    parser.add_argument(
        '--example-config',
        type=Path,
        metavar='OUTPUT',
        help='Write an example configuration file and exit'
    )

    # Export behavior
    parser.add_argument(
        '--overwrite',
        action='store_true',
        default=None,
        help='Overwrite existing export files instead of appending to them'
    )
    parser.add_argument(
        '--no-media',
        action='store_false',
        dest='export_media',
        default=None,
        help='Don\'t copy media files, just write their names'
    )
    parser.add_argument(
        '--split-select-multiples',
        action='store_true',
        default=None,
        help='Add one 1/0 column per choice of select multiple fields'
    )
    parser.add_argument(
        '--geojson',
        action='store_true',
        default=None,
        help='Also export spatial fields to a GeoJSON file'
    )
    parser.add_argument(
        '--remove-group-names',
        action='store_true',
        default=None,
        help='Drop group names from the column headers'
    )
    parser.add_argument(
        '--smart-append',
        action='store_true',
        default=None,
        help='Only export submissions received after the last export'
    )

    # Output options
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Minimal output (errors only)'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress indicators'
    )
    return parser


def load_configuration(args: argparse.Namespace) -> ExportConfiguration:
    """Merge the configuration file (if any) with the command-line flags."""
    if args.config:
        configuration = ConfigManager(args.config).load()
    else:
        configuration = ExportConfiguration()

    return configuration.with_overrides(
        export_dir=args.export_dir,
        export_filename=args.filename,
        pem_file=args.pem,
        start_date=args.start,
        end_date=args.end,
        max_workers=args.workers,
        state_db_path=args.state_db,
        overwrite_files=args.overwrite,
        export_media=args.export_media,
        split_select_multiples=args.split_select_multiples,
        include_geojson_export=args.geojson,
        remove_group_names=args.remove_group_names,
        smart_append=args.smart_append,
    )


class ProgressReporter:
    """Feeds export events into a tqdm progress bar."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.bar: Optional[tqdm] = None
        self.messages: List[str] = []

    def __call__(self, event: ExportEvent) -> None:
        if event.type == ExportEventType.PROGRESS:
            if not self.enabled:
                return
            if self.bar is None:
                self.bar = tqdm(total=event.total, desc="Exporting", unit="submission")
            self.bar.update(event.processed - self.bar.n)
        elif event.type == ExportEventType.END:
            self.close()
        elif event.type != ExportEventType.START:
            self.messages.append(event.message)

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def default_form_file(form_dir: Path) -> Path:
    return form_dir / f"{form_dir.name}.xml"


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")

    if args.example_config:
        ConfigManager().save_example_config(args.example_config)
        if not args.quiet:
            print(f"✅ Example configuration written to {args.example_config}")
        return EXIT_OK

    if not args.form_dir:
        parser.error("form_dir is required unless using --example-config")

    if not args.form_dir.is_dir():
        print(f"❌ Error: Form directory not found: {args.form_dir}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    form_file = args.form or default_form_file(args.form_dir)
    try:
        configuration = load_configuration(args)
        form = FormDefinition.from_xform(form_file, args.form_dir)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    if not args.quiet:
        print(f"📊 Exporting form '{form.form_name}' ({form.form_id}) to {configuration.export_dir}")

    reporter = ProgressReporter(enabled=not args.quiet and not args.no_progress)
    pipeline = ExportPipeline(form, configuration, on_event=reporter, cancel_event=threading.Event())
    try:
        result = pipeline.run()
    except ConfigurationError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except KeyboardInterrupt:
        pipeline.cancel_event.set()
        print("Aborted.", file=sys.stderr)
        return EXIT_SKIPPED
    finally:
        reporter.close()

    if not args.quiet:
        for message in reporter.messages:
            print(f"   {message}")
        for path in result.output_files:
            print(f"📁 {path}")

    if result.outcome == ExportOutcome.ALL_SKIPPED and result.total_submissions > 0:
        return EXIT_SKIPPED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
