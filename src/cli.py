#!/usr/bin/env python3
"""CLI entry point for feast-driver.

Commands:
- setup: Deploy datastores and a FeatureStore (optionally the operator)
- teardown: Remove what setup created
- render: Render manifest templates into the staging directory only

Usage:
    feast-driver setup -n feast -c -o [--skip-datastores] [--dry-run]
    feast-driver teardown -n feast --delete-namespace [--yes]
    feast-driver render -n feast
"""

import argparse
import dataclasses
import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

from common import FatalError
from config import ConfigError, DriverConfig, load_config
from kube import KubectlClient
from renderer import render_templates
from sequences import Sequencer, get_sequence

COMMANDS = {
    "setup": "Deploy datastores and a Feast FeatureStore",
    "teardown": "Remove the Feast stack from a namespace",
    "render": "Render manifest templates only",
}

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that exits 1 on usage errors (2 is reserved for fatal errors)."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILED, f"{self.prog}: error: {message}\n")


def _common_parser(command: str) -> argparse.ArgumentParser:
    """Build argument parser with options shared by all commands.

    Boolean flags default to None so that an unset flag does not override
    a value from the config file.
    """
    parser = _Parser(
        prog=f'feast-driver {command}',
        description=COMMANDS[command],
    )
    parser.add_argument(
        '--namespace', '-n',
        help='Target namespace (default: feast)',
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='YAML config file (default: $FEAST_DRIVER_CONFIG)',
    )
    parser.add_argument(
        '--kubectl',
        help='Cluster CLI to use, e.g. oc (default: $KUBECTL_CMD or kubectl)',
    )
    parser.add_argument(
        '--template-dir',
        type=Path,
        help='Manifest template directory',
    )
    parser.add_argument(
        '--generated-dir',
        type=Path,
        help='Staging directory for rendered manifests',
    )
    parser.add_argument(
        '--operator-dir',
        type=Path,
        help='Feast Operator source tree (default: $FEAST_OPERATOR_DIR)',
    )
    parser.add_argument(
        '--operator-manifest-url',
        help='URL of a released operator install.yaml',
    )
    parser.add_argument(
        '--feature-store-name',
        help='FeatureStore name (default: from feast.yaml)',
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        help='Write JSON and markdown reports to this directory',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _add_dry_run(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=None,
        help='Preview stages without touching the cluster',
    )


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _config_from_args(args: argparse.Namespace) -> DriverConfig:
    """Resolve DriverConfig from parsed arguments.

    Raises:
        ConfigError: On invalid settings
    """
    fields = {f.name for f in dataclasses.fields(DriverConfig)}
    overrides = {k: v for k, v in vars(args).items() if k in fields}
    return load_config(args.config, **overrides)


def _confirm_teardown(config: DriverConfig) -> bool:
    """Ask before deleting resources. Returns True to proceed."""
    print(f"\nWARNING: This will remove the Feast stack from namespace '{config.namespace}'.")
    if config.uninstall_operator:
        print("The Feast Operator will be uninstalled.")
    if config.delete_namespace:
        print(f"Namespace '{config.namespace}' and everything in it will be deleted.")
    print("This action cannot be undone.")
    response = input("Continue? [y/N] ").strip().lower()
    return response == 'y'


def _run_sequence(name: str, config: DriverConfig, json_output: bool) -> int:
    """Run a sequence and report the outcome.

    Returns:
        0 on completion (soft outcomes included), 1 on a failed stage,
        2 on a fatal abort
    """
    sequence = get_sequence(name)
    kube = KubectlClient(kubectl=config.kubectl)
    sequencer = Sequencer(sequence, config, kube)

    success = sequencer.run()
    if config.dry_run:
        return EXIT_OK

    if json_output:
        print(json.dumps(sequencer.report.to_dict(), indent=2))
    else:
        sequencer.report.print_summary(sequence.summary_hints(config))

    if sequencer.aborted:
        logger.error(f"{name.capitalize()} aborted in state '{sequencer.state.value}'")
        return EXIT_FATAL
    if not success:
        return EXIT_FAILED
    if sequencer.report.degraded:
        logger.warning(f"{name.capitalize()} completed with {len(sequencer.report.degraded)} stage(s) needing follow-up")
    return EXIT_OK


def setup_main(argv: list) -> int:
    """Handle 'setup' command."""
    parser = _common_parser('setup')
    parser.add_argument(
        '--create-namespace', '-c',
        action='store_true',
        default=None,
        help='Create the namespace if it does not exist',
    )
    parser.add_argument(
        '--operator-install', '-o',
        dest='install_operator',
        action='store_true',
        default=None,
        help='Install the Feast Operator before deploying',
    )
    parser.add_argument(
        '--skip-datastores',
        action='store_true',
        default=None,
        help='Do not deploy PostgreSQL and Redis',
    )
    parser.add_argument(
        '--skip-feast',
        action='store_true',
        default=None,
        help="Do not deploy the FeatureStore CR (implies --skip-apply)",
    )
    parser.add_argument(
        '--skip-apply',
        action='store_true',
        default=None,
        help="Do not run the 'feast apply' job",
    )
    parser.add_argument(
        '--wait',
        dest='wait_timeout',
        type=int,
        metavar='SECONDS',
        help='Timeout for operator and datastore readiness (default: 120)',
    )
    parser.add_argument(
        '--feast-timeout',
        type=int,
        metavar='SECONDS',
        help='Timeout for the FeatureStore to become Ready (default: 300)',
    )
    parser.add_argument(
        '--apply-timeout',
        type=int,
        metavar='SECONDS',
        help="Timeout for the 'feast apply' job (default: 300)",
    )
    _add_dry_run(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = _config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    return _run_sequence('setup', config, args.json_output)


def teardown_main(argv: list) -> int:
    """Handle 'teardown' command."""
    parser = _common_parser('teardown')
    parser.add_argument(
        '--operator-uninstall', '-o',
        dest='uninstall_operator',
        action='store_true',
        default=None,
        help='Uninstall the Feast Operator',
    )
    parser.add_argument(
        '--delete-namespace',
        action='store_true',
        default=None,
        help='Delete the namespace',
    )
    parser.add_argument(
        '--skip-datastores',
        action='store_true',
        default=None,
        help='Keep PostgreSQL and Redis',
    )
    parser.add_argument(
        '--skip-feast',
        action='store_true',
        default=None,
        help='Keep the FeatureStore CR',
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    _add_dry_run(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = _config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    sequence = get_sequence('teardown')
    needs_prompt = getattr(sequence, 'requires_confirmation', False)
    if needs_prompt and not config.dry_run and not args.yes and sys.stdin.isatty():
        if not _confirm_teardown(config):
            print("Aborted.")
            return EXIT_FAILED

    return _run_sequence('teardown', config, args.json_output)


def render_main(argv: list) -> int:
    """Handle 'render' command."""
    parser = _common_parser('render')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = _config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    try:
        manifests = render_templates(config.template_dir, config.generated_dir, config.namespace)
    except FatalError as e:
        logger.error(f"Render failed: {e}")
        return EXIT_FATAL

    if args.json_output:
        output = {
            'namespace': config.namespace,
            'manifests': [
                {'name': m.name, 'path': str(m.path), 'kinds': list(m.kinds)}
                for m in manifests
            ],
        }
        print(json.dumps(output, indent=2))
    else:
        for m in manifests:
            print(f"  {m.path}  ({', '.join(m.kinds)})")
    return EXIT_OK


HANDLERS = {
    "setup": setup_main,
    "teardown": teardown_main,
    "render": render_main,
}


def print_usage():
    """Print top-level usage showing commands."""
    print(f"feast-driver {get_version()}")
    print()
    print("Usage: feast-driver <command> [options]")
    print()
    print("Commands:")
    for command, desc in COMMANDS.items():
        print(f"  {command:<12} {desc}")
    print()
    print("Run 'feast-driver <command> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  feast-driver setup -n feast -c -o")
    print("  feast-driver setup -n feast --skip-datastores --feast-timeout 600")
    print("  feast-driver teardown -n feast -o --delete-namespace --yes")
    print("  feast-driver render -n staging")


def main(argv: Optional[list] = None) -> int:
    """CLI entry point: dispatch to command handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return EXIT_FAILED if not argv else EXIT_OK

    if argv[0] == '--version':
        print(f"feast-driver {get_version()}")
        return EXIT_OK

    command, rest = argv[0], argv[1:]
    handler = HANDLERS.get(command)
    if handler is None:
        print(f"Error: unknown command '{command}'. Available: {', '.join(COMMANDS)}", file=sys.stderr)
        return EXIT_FAILED
    return handler(rest)


if __name__ == '__main__':
    sys.exit(main())
