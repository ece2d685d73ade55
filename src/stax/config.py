"""YAML configuration for stax statistics suites.

A suite lists queries and, for each query, the estimates verified against
its actual statistics. Metrics and strategies are written in the canonical
notation parsed by stax.notation.

Example:
    name: tpcds-local-stats
    session:
      catalog: memory
      schema: main
      properties:
        collect_plan_statistics_for_all_queries: "true"
    checks:
      - query: SELECT * FROM item
        estimates:
          - metric: OUTPUT_ROW_COUNT
            strategy: defaultTolerance
          - column: i_category
            strategy: relativeError(0.5)
            character: true

    config = load_config("suite.yaml")
    results = run_suite(StatisticsAssertion(engine), config)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jsonschema
import yaml

from stax.common import Session, StaxError
from stax.models import AssertionResult, MetricCheck
from stax.notation import format_metric, parse_metric, parse_strategy
from stax.specs import column_statistics

if TYPE_CHECKING:
    from stax.api import Checks, StatisticsAssertion

logger = logging.getLogger(__name__)


# =============================================================================
# JSON Schema Validation
# =============================================================================

# Default schema path relative to this module
_SCHEMA_PATH = Path(__file__).parent / "suite.schema.json"


@lru_cache(maxsize=None)
def _load_schema(schema_path: Path) -> dict[str, Any]:
    """Read a JSON schema once per path.

    Raises:
        StaxError: If the schema cannot be read
    """
    try:
        return json.loads(schema_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:  # pragma: no cover
        raise StaxError(f"Failed to load JSON schema {schema_path}: {e}") from e


def _names_file(source: str | Path) -> bool:
    if isinstance(source, Path):
        return True
    # Multi-line text is always YAML content
    if "\n" in source:
        return False
    try:
        return Path(source).is_file()
    except OSError:
        # Long single-line YAML exceeds the path length limit
        return False


def _read_yaml(source: str | Path) -> Any:
    """Parse a suite from a YAML file or from YAML text.

    Raises:
        StaxError: If the file does not exist or the YAML is malformed
    """
    if _names_file(source):
        path = Path(source)
        if not path.exists():
            raise StaxError(f"Configuration file not found: {path}")
        text = path.read_text(encoding="utf-8")
    else:
        text = str(source)

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise StaxError(f"Failed to parse configuration: {e}") from e


def validate_config_schema(
    path_or_content: str | Path,
    schema_path: Path | None = None,
) -> list[str]:
    """Check a suite file or YAML text against the schema without parsing notation.

    Returns:
        Every problem found, empty for a valid suite. Unreadable input is
        reported as a single message instead of raising.

    Example:
        >>> for problem in validate_config_schema("suite.yaml"):
        ...     print(problem)
    """
    try:
        config_dict = _read_yaml(path_or_content)
    except StaxError as e:
        return [str(e)]
    return validate_dict_schema(config_dict, schema_path)


def _error_path(error: jsonschema.ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path) or "root"


def validate_dict_schema(
    config_dict: Any,
    schema_path: Path | None = None,
) -> list[str]:
    """Validate a parsed suite against the JSON schema.

    Returns:
        One "path: message" entry per violation, empty if valid
    """
    if not config_dict:
        return ["Configuration cannot be empty"]

    validator = jsonschema.Draft202012Validator(_load_schema(schema_path or _SCHEMA_PATH))
    return [f"{_error_path(error)}: {error.message}" for error in validator.iter_errors(config_dict)]


# =============================================================================
# Configuration Loader
# =============================================================================


@dataclass
class QueryCheckConfig:
    """One query and the (metric, strategy) pairs verified for it."""

    query: str
    pairs: list[MetricCheck] = field(default_factory=list)
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.query

    def apply(self, checks: Checks) -> Checks:
        """Builder adding this configuration's pairs to a Checks declaration."""
        for pair in self.pairs:
            checks = checks.estimate(pair.metric, pair.strategy)
        return checks


@dataclass
class SuiteConfig:
    """Configuration for a statistics suite."""

    name: str
    session: Session = field(default_factory=Session)
    checks: list[QueryCheckConfig] = field(default_factory=list)


def _raise_schema_errors(errors: list[str]) -> None:
    if errors:
        raise StaxError("Schema validation failed:\n  " + "\n  ".join(errors))


def _load(config_dict: Any, validate_schema: bool) -> SuiteConfig:
    if validate_schema:
        _raise_schema_errors(validate_dict_schema(config_dict))
    return parse_config(config_dict)


def load_config(path: str | Path, *, validate_schema: bool = True) -> SuiteConfig:
    """Read a suite from a YAML file.

    Raises:
        StaxError: If the file is missing or malformed, breaks the schema or
            holds invalid notation
    """
    return _load(_read_yaml(Path(path)), validate_schema)


def load_config_string(content: str, *, validate_schema: bool = True) -> SuiteConfig:
    """Read a suite from YAML text.

    Raises:
        StaxError: If the text is malformed, breaks the schema or holds invalid notation
    """
    try:
        config_dict = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise StaxError(f"Failed to parse configuration: {e}") from e
    return _load(config_dict, validate_schema)


def _property_value(value: Any) -> str:
    # YAML booleans become the engine's lower-case literals
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_session(session_dict: dict[str, Any] | None) -> Session:
    if not session_dict:
        return Session()

    properties = {key: _property_value(value) for key, value in (session_dict.get("properties") or {}).items()}
    return Session(
        catalog=session_dict.get("catalog"),
        schema=session_dict.get("schema"),
        properties=properties,
    )


def parse_config(config_dict: dict[str, Any]) -> SuiteConfig:
    """Parse a configuration dictionary into a SuiteConfig.

    Raises:
        StaxError: If configuration is invalid
    """
    if not config_dict:
        raise StaxError("Configuration cannot be empty")

    name = config_dict.get("name")
    if not name:
        raise StaxError("Configuration must have a 'name' field")

    checks_list = config_dict.get("checks", [])
    if not checks_list:
        raise StaxError("Configuration must have at least one check")

    return SuiteConfig(
        name=name,
        session=_parse_session(config_dict.get("session")),
        checks=[_parse_check(check_dict) for check_dict in checks_list],
    )


def _parse_check(check_dict: dict[str, Any]) -> QueryCheckConfig:
    query = check_dict.get("query")
    if not query:
        raise StaxError("Check must have a 'query' field")

    name = check_dict.get("name")
    label = name or query

    estimates = check_dict.get("estimates", [])
    if not estimates:
        raise StaxError(f"Check '{label}' must have at least one estimate")

    pairs: list[MetricCheck] = []
    for estimate_dict in estimates:
        pairs.extend(_parse_estimate(estimate_dict, label))

    return QueryCheckConfig(query=query, pairs=pairs, name=name)


def _parse_estimate(estimate_dict: dict[str, Any], label: str) -> list[MetricCheck]:
    strategy_text = estimate_dict.get("strategy")
    if not strategy_text:
        raise StaxError(f"Estimate in check '{label}' must have a 'strategy' field")

    try:
        strategy = parse_strategy(strategy_text)
        if "column" in estimate_dict:
            metrics = column_statistics(estimate_dict["column"], character=bool(estimate_dict.get("character", False)))
            return [MetricCheck(metric, strategy) for metric in metrics]

        metric_text = estimate_dict.get("metric")
        if not metric_text:
            raise StaxError("Estimate must have a 'metric' or a 'column' field")
        return [MetricCheck(parse_metric(metric_text), strategy)]
    except StaxError as e:
        raise StaxError(f"Invalid estimate in check '{label}': {e}") from e


# =============================================================================
# Execution
# =============================================================================


def run_suite(
    assertion: StatisticsAssertion,
    config: SuiteConfig,
    *,
    timeout: float | None = None,
) -> list[AssertionResult]:
    """Run every configured check under the suite's session.

    Results are returned for every query; mismatches in one query never stop
    the others. Setup failures propagate.
    """
    logger.info(f"Running statistics suite '{config.name}' with {len(config.checks)} queries")

    results = []
    for check in config.checks:
        results.append(assertion.check(check.query, check.apply, session=config.session, timeout=timeout))

    failed = sum(1 for result in results if not result.passed)
    logger.info(f"Suite '{config.name}': {len(results) - failed} passed, {failed} failed")
    return results


# =============================================================================
# Serialization
# =============================================================================


def suite_config_to_dict(config: SuiteConfig) -> dict[str, Any]:
    """Convert a SuiteConfig to a dictionary for YAML serialization.

    Column shorthands are expanded: every pair is written as a metric entry.
    """
    result: dict[str, Any] = {"name": config.name}

    session = config.session
    if session.catalog or session.schema or session.properties:
        session_dict: dict[str, Any] = {}
        if session.catalog:
            session_dict["catalog"] = session.catalog
        if session.schema:
            session_dict["schema"] = session.schema
        if session.properties:
            session_dict["properties"] = dict(session.properties)
        result["session"] = session_dict

    result["checks"] = [_check_to_dict(check) for check in config.checks]
    return result


def _check_to_dict(check: QueryCheckConfig) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if check.name:
        result["name"] = check.name
    result["query"] = check.query
    result["estimates"] = [
        {"metric": format_metric(pair.metric), "strategy": pair.strategy.name} for pair in check.pairs
    ]
    return result


def suite_config_to_yaml(config: SuiteConfig) -> str:
    """Serialize a SuiteConfig to YAML string."""
    config_dict = suite_config_to_dict(config)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)
