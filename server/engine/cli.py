"""
Command-line entry point for the analysis engine.

Exit status is 0 for a clean run, 1 when the report contains a
fatality, and 2 when configuration or plugin initialization failed.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .analyzer import analyze_codebase
from .config import ConfigResolver
from .errors import ConfigurationError, PluginInitializationError
from .settings import EngineSettings
from .types import REPO_GLOBAL_CHECK, IssueReport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATALITY = 1
EXIT_CONFIG_ERROR = 2


def format_pretty(report: IssueReport) -> str:
    lines = [
        f"Archetype: {report.archetype}",
        f"Files analyzed: {report.file_count}",
        f"Issues: {report.total_issues} (fatalities {report.fatality_count}, "
        f"errors {report.error_count}, warnings {report.warning_count}, "
        f"exempt {report.exempt_count})",
    ]
    for entry in report.to_dict()["issueDetails"]:
        path = "(repository)" if entry["filePath"] == REPO_GLOBAL_CHECK else entry["filePath"]
        lines.append("")
        lines.append(path)
        for issue in entry["errors"]:
            loc = issue["location"]
            lines.append(f"  {loc['startLine']}:{loc['startColumn']}  {issue['level']:<9} "
                         f"{issue['ruleFailure']}  {issue['message']}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analyze a repository against an archetype's rules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m engine.cli --dir . --archetype node-fullstack
  python -m engine.cli --dir repo/ --config-server https://xfi.example.com --format pretty
  python -m engine.cli --dir repo/ --local-config ./xfi-config --output report.json
        """
    )
    parser.add_argument("--dir", "-d", default=".", help="Repository to analyze (default: .)")
    parser.add_argument("--archetype", "-a", help="Archetype name (default: XFI_ARCHETYPE)")
    parser.add_argument("--config-server", "-c", help="Config server base URL")
    parser.add_argument("--local-config", "-l", help="Local config directory")
    parser.add_argument("--repo-url", help="Repository URL used for exemptions")
    parser.add_argument("--format", choices=["json", "pretty"], default="json",
                        help="Output format (default: json)")
    parser.add_argument("--output", "-o", help="Write the report to this file instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
                        stream=sys.stderr)

    overrides = {}
    if args.archetype:
        overrides["archetype"] = args.archetype
    if args.config_server:
        overrides["config_server"] = args.config_server
    if args.local_config:
        overrides["local_config_path"] = args.local_config
    engine_settings = EngineSettings(**overrides)

    resolver = ConfigResolver.from_settings(engine_settings)
    try:
        report = analyze_codebase(args.dir, engine_settings.archetype, resolver=resolver,
                                  repo_url=args.repo_url, engine_settings=engine_settings)
    except (ConfigurationError, PluginInitializationError) as e:
        logger.error("Analysis aborted: %s", e)
        return EXIT_CONFIG_ERROR
    finally:
        resolver.close()

    output = json.dumps(report.to_dict(), indent=2) if args.format == "json" else format_pretty(report)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output + "\n")
    else:
        print(output)
    return EXIT_FATALITY if report.has_fatalities else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
