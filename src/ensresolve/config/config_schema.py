"""JSON Schema-based validation for ensresolve YAML configuration.

This module expands ``vars`` and validates the main ``config.yaml`` against
the JSON Schema document stored under ``assets/config-schema.json``.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger("ensresolve.config")

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")
_VAR_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")

_UNKNOWN_KEY_POLICIES = {"ignore", "warn", "error"}


class _VariableExpander:
    """Brief: Expand ``${KEY}`` / ``$KEY`` references against a vars mapping.

    Inputs:
      - variables: Mapping of ALL_UPPERCASE names to YAML values.

    Notes:
      - A string that is exactly ``$KEY`` or ``${KEY}`` is replaced by the
        variable's value (any YAML type); such a list item holding a list
        value is spliced into the surrounding list.
      - ``${KEY}`` inside a longer string is replaced by the value's text.
      - Unknown references are left untouched; cycles raise ValueError.
    """

    def __init__(self, variables: Dict[str, Any]) -> None:
        self.variables = variables
        self.resolved: Dict[str, Any] = {}

    def resolve(self, key: str, stack: List[str]) -> Any:
        if key in self.resolved:
            return self.resolved[key]
        if key in stack:
            raise ValueError(f"config.vars contains a cycle: {' -> '.join(stack + [key])}")
        if key not in self.variables:
            raise KeyError(key)
        value = self.expand(self.variables[key], stack + [key])
        self.resolved[key] = value
        return value

    def _whole_ref(self, text: str) -> Optional[str]:
        if text.startswith("${") and text.endswith("}") and text[2:-1] in self.variables:
            return text[2:-1]
        if text.startswith("$") and text[1:] in self.variables:
            return text[1:]
        return None

    def _expand_string(self, text: str, stack: List[str]) -> Any:
        ref = self._whole_ref(text)
        if ref is not None:
            return copy.deepcopy(self.resolve(ref, stack))

        def _repl(match: re.Match) -> str:
            try:
                value = self.resolve(match.group(1), stack)
            except KeyError:
                return match.group(0)
            if isinstance(value, bool):
                return "true" if value else "false"
            if value is None:
                return "null"
            if isinstance(value, (int, float, str)):
                return str(value)
            return json.dumps(value)

        return _VAR_PATTERN.sub(_repl, text)

    def expand(self, obj: Any, stack: List[str]) -> Any:
        if isinstance(obj, str):
            return self._expand_string(obj, stack)
        if isinstance(obj, list):
            out: List[Any] = []
            for item in obj:
                expanded = self.expand(item, stack)
                if isinstance(item, str) and self._whole_ref(item) and isinstance(expanded, list):
                    out.extend(expanded)
                else:
                    out.append(expanded)
            return out
        if isinstance(obj, dict):
            return {k: self.expand(v, stack) for k, v in obj.items()}
        return obj


def expand_variables(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level ``vars`` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Example:
      >>> cfg = {"vars": {"LAG": 30}, "engine": {"acceleration": {"max_lag_seconds": "$LAG"}}}
      >>> expand_variables(cfg)
      >>> cfg
      {'engine': {'acceleration': {'max_lag_seconds': 30}}}
    """

    variables = cfg.pop("vars", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ValueError("config.vars must be a mapping when present")
    for k in variables:
        if not isinstance(k, str) or not _VAR_NAME.fullmatch(k):
            raise ValueError(f"config.vars key {k!r} must match [A-Z_][A-Z0-9_]*")

    expander = _VariableExpander(variables)
    # Resolve every variable first so cycles are reported even when unused.
    for k in variables:
        expander.resolve(k, [])
    for top_key in list(cfg.keys()):
        cfg[top_key] = expander.expand(cfg[top_key], [])


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json`` in the nearest ancestor
        directory that has one (falls back to the project-root location).
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def _load_schema(schema_path: Path) -> Dict[str, Any]:
    with schema_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display in logs or CLI output.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def _split_extra_property_errors(
    errors: List[ValidationError],
) -> Tuple[List[ValidationError], List[ValidationError]]:
    """Partition errors into (unexpected-property errors, everything else)."""

    extra: List[ValidationError] = []
    other: List[ValidationError] = []
    for err in errors:
        if err.validator in {"additionalProperties", "unevaluatedProperties"}:
            extra.append(err)
        else:
            other.append(err)
    return extra, other


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
    unknown_keys: str = "warn",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (top-level configuration mapping).
      - schema_path: Optional explicit path to JSON Schema file. When omitted,
        the default ``assets/config-schema.json`` is used.
      - config_path: Optional string path to the YAML file, used only for
        error messages.
      - unknown_keys: Policy for keys not described by the JSON Schema:

        - "ignore": ignore extra-property validation errors entirely.
        - "warn": (default) log a warning listing the offending paths.
        - "error": treat extra-property errors as fatal.

    Outputs:
      - None on success.

    Raises:
      - ValueError: when non-extra validation fails, when ``unknown_keys`` is
        "error" and there are extra-property errors, or when the schema file
        cannot be loaded.

    Example:
      >>> validate_config({"engine": {"root_chain_id": 1}})
    """

    if unknown_keys not in _UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    expand_variables(cfg)

    effective_schema_path = schema_path or get_default_schema_path()
    try:
        schema = _load_schema(effective_schema_path)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        raise ValueError(
            f"Failed to load configuration schema at {effective_schema_path}: {exc}"
        ) from exc

    all_errors = sorted(validator.iter_errors(cfg), key=lambda e: list(map(str, e.path)))
    if not all_errors:
        return None

    extra_errors, other_errors = _split_extra_property_errors(all_errors)

    # Non-extra failures are always fatal; report extras alongside them.
    if other_errors:
        raise ValueError(_format_errors(other_errors + extra_errors, config_path=config_path))

    message = _format_errors(extra_errors, config_path=config_path)
    if unknown_keys == "ignore":
        return None
    if unknown_keys == "warn":
        logger.warning(message)
        return None
    raise ValueError(message)
