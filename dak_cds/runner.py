#!/usr/bin/env python3
"""CLI runner for DAK rule management and decision support.

Usage:
    python -m dak_cds.runner import rules.csv
    python -m dak_cds.runner integrity
    python -m dak_cds.runner compliance
    python -m dak_cds.runner evaluate ANC observations.json
    python -m dak_cds.runner danger-signs "Convulsing" "Fever"
    python -m dak_cds.runner ipv "Ongoing anxiety"
"""

import argparse
import json
import logging
import sys

from .config import Config
from .exceptions import DAKError, ImportAbortedError
from .normalizer import normalize
from .repository import RuleRepository
from .rules import (
    RuleEvaluationEngine,
    evaluate_danger_signs,
    evaluate_ipv_risk,
    generate_ipv_recommendations,
    generate_recommendation,
)
from .store import RuleStore


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from the development server
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def run_import(repository: RuleRepository, path: str) -> int:
    """Import a DAK CSV and print the outcome."""
    result = repository.import_csv(path)

    print("\n=== DAK Rule Import ===")
    print(f"Source:       {path}")
    print(f"Job:          {result.job_id or '-'}")
    print(f"Accepted:     {result.accepted}")
    print(f"Rejected:     {result.rejected}")
    print(f"Superseded:   {result.superseded}")
    print(f"Modules:      {', '.join(sorted(result.modules_touched)) or '-'}")
    print(result.message)

    if result.errors:
        print("\nRejected rows:")
        print("-" * 80)
        for error in result.errors:
            print(f"  row {error.row:>4} | {error.reason:24s} | {error.rule_code or '?':16s} | {error.message}")
        print("-" * 80)
    print()
    return 0


def show_integrity(repository: RuleRepository) -> int:
    """Run the integrity check and list issues. Exit code 1 when any are found."""
    report = repository.integrity_check()

    print("\n=== DAK Integrity Check ===")
    print(f"Total active rules:  {report.total_rules}")
    print(f"Valid rules:         {report.valid_rules}")
    print(f"Issues found:        {report.issues_found}")

    if report.issues:
        print("-" * 80)
        for issue in report.issues:
            print(
                f"  {issue.severity.value:7s} | {issue.module_code or '?':8s} | "
                f"{issue.rule_code:16s} | {issue.message}"
            )
        print("-" * 80)
    print()
    return 1 if report.issues_found else 0


def show_compliance(repository: RuleRepository) -> int:
    """Print compliance percentages."""
    report = repository.compliance_report()

    print("\n=== DAK Compliance Report ===")
    print(f"Total rules:  {report['total_rules']}")
    print(f"Valid rules:  {report['valid_rules']}")
    for name, value in report["compliance"].items():
        print(f"  {name:24s} {value:6.1f}%")
    print()
    return 0


def run_evaluate(repository: RuleRepository, module: str, path: str, top: int) -> int:
    """Evaluate observations from a JSON file against a module's active rules."""
    with open(path) as f:
        raw = json.load(f)

    observations = normalize(raw, module)
    rules = repository.get_active_rules(observations.module_code)
    result = RuleEvaluationEngine().evaluate_detailed(observations, rules)

    print(f"\n=== {observations.module_code} Decision Support ===")
    print(f"Rules evaluated:    {result.evaluated}")
    print(f"Alerts fired:       {len(result.alerts)}")
    print(f"Referral required:  {'yes' if result.referral_required else 'no'}")
    if observations.dropped_keys:
        print(f"Ignored fields:     {', '.join(observations.dropped_keys)}")

    for alert in result.top(top):
        print("-" * 80)
        print(f"[{alert.severity.value.upper():6s}] {alert.rule_code}: {alert.title}")
        print(f"  {alert.message}")
        for rec in alert.recommendations:
            print(f"  - {rec}")
    if result.skipped:
        print("-" * 80)
        for skipped in result.skipped:
            print(f"  skipped {skipped.rule_code}: {skipped.reason}")
    print()
    return 0


def show_danger_signs(signs: list[str]) -> int:
    """Run the ANC danger-sign assessment for the given signs."""
    evaluation = evaluate_danger_signs(signs)

    print("\n=== ANC Danger Sign Assessment ===")
    print(f"Action:   {evaluation.action}")
    print(f"Rule:     {evaluation.rule_id}")
    for meta in evaluation.signs:
        print(f"  {meta.severity.value:8s} | {meta.urgency:10s} | {meta.sign}")
    if evaluation.ignored:
        print(f"Ignored:  {', '.join(evaluation.ignored)}")
    print()
    print(generate_recommendation(evaluation))
    print()
    return 1 if evaluation.referral_required else 0


def show_ipv(signs: list[str]) -> int:
    """Run IPV risk stratification for the given screening answers."""
    assessment = evaluate_ipv_risk(signs)

    print("\n=== IPV Risk Assessment ===")
    print(f"Rule:     {assessment.rule_code}")
    print(f"Level:    {assessment.risk_level.value}")
    print(f"Referral: {'yes' if assessment.referral_required else 'no'}")
    print()
    print(generate_ipv_recommendations(assessment))
    print()
    return 1 if assessment.referral_required else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="DAK clinical decision support rules and evaluation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Import a DAK rule sheet
    python -m dak_cds.runner import dak_rules.csv

    # Integrity check and compliance percentages
    python -m dak_cds.runner integrity
    python -m dak_cds.runner compliance

    # Evaluate an ANC visit
    python -m dak_cds.runner evaluate ANC visit.json --top 3

    # Danger sign triage (exit code 1 when referral is required)
    python -m dak_cds.runner danger-signs Convulsing

    # IPV risk stratification (exit code 1 when referral is required)
    python -m dak_cds.runner ipv "Injury to abdomen"
        """,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help=f"Path to DAK rule database (default: {Config.DB_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a DAK rule CSV")
    import_parser.add_argument("csv", help="Path to the DAK CSV file")

    subparsers.add_parser("integrity", help="Check the active rule set")
    subparsers.add_parser("compliance", help="Show DAK compliance percentages")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate observations")
    evaluate_parser.add_argument("module", help="Module code (ANC, ART, PREP, ...)")
    evaluate_parser.add_argument("observations", help="Path to a JSON file of observations")
    evaluate_parser.add_argument(
        "--top",
        type=int,
        default=Config.TOP_ALERTS,
        help=f"Number of alerts to show (default: {Config.TOP_ALERTS})",
    )

    danger_parser = subparsers.add_parser("danger-signs", help="ANC danger sign triage")
    danger_parser.add_argument("signs", nargs="*", help='Selected danger signs, or "None"')

    ipv_parser = subparsers.add_parser("ipv", help="IPV risk stratification")
    ipv_parser.add_argument("signs", nargs="*", help="Selected IPV screening answers")

    serve_parser = subparsers.add_parser("serve", help="Run the development API server")
    serve_parser.add_argument("--port", type=int, default=5000)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    logger = logging.getLogger(__name__)

    if args.command == "danger-signs":
        return show_danger_signs(args.signs)

    if args.command == "ipv":
        return show_ipv(args.signs)

    if args.command == "serve":
        from .api import create_app
        config = {"DB_PATH": args.db_path} if args.db_path else None
        create_app(config).run(host="0.0.0.0", port=args.port, debug=True)
        return 0

    try:
        repository = RuleRepository(store=RuleStore(db_path=args.db_path))
    except Exception as e:
        logger.error(f"Failed to open rule store: {e}")
        return 1

    try:
        if args.command == "import":
            return run_import(repository, args.csv)
        if args.command == "integrity":
            return show_integrity(repository)
        if args.command == "compliance":
            return show_compliance(repository)
        if args.command == "evaluate":
            return run_evaluate(repository, args.module, args.observations, args.top)
    except ImportAbortedError as e:
        logger.error(f"Import aborted: {e.message}")
        return 2
    except DAKError as e:
        logger.error(f"{args.command} failed: {e.message}")
        return 1
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read input: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
