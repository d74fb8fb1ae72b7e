"""Configuration parsing helpers for ensresolve.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - JSON Schema validation (including variable expansion performed by
      validate_config)

Inputs:
  - YAML config paths and CLI variable assignments

Outputs:
  - Validated config dicts ready for settings.load_settings()
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import yaml

from .config_schema import validate_config

_VAR_KEY_RE = re.compile(r"[A-Z_][A-Z0-9_]*")

# Environment variables are only merged when they carry this prefix, so that
# unrelated process environment (PATH, HOME, ...) never shadows config vars.
ENV_PREFIX = "ENSRESOLVE_"


def _is_var_key(key: str) -> bool:
    """Brief: Validate whether a string is a supported variable key name.

    Inputs:
      - key: Candidate variable name.

    Outputs:
      - bool: True when the name is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*.
    """

    if not key or key != key.upper():
        return False
    return bool(_VAR_KEY_RE.fullmatch(key))


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (the original string when it is not valid YAML).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.

    Notes:
      - Environment variables named ENSRESOLVE_<KEY> set variable <KEY>.
      - Values are parsed as YAML so list/dict/int/bool values can be provided.

    Example:
      >>> cfg = {'vars': {'MAX_LAG': 60}}
      >>> parse_config_variables(cfg, cli_vars=['MAX_LAG=30'], environ={})['MAX_LAG']
      30
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = os.environ if environ is None else environ
    for k, v in env.items():
        if not isinstance(k, str) or not k.startswith(ENV_PREFIX):
            continue
        key = k[len(ENV_PREFIX) :]
        if _is_var_key(key):
            merged[key] = _parse_yaml_value(str(v))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not _is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    cfg["vars"] = merged
    return merged


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
    unknown_keys: str = "warn",
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping (defaults to os.environ).
      - unknown_keys: Policy for keys the schema does not describe.

    Outputs:
      - dict: Parsed configuration mapping (mutated by validate_config).

    Raises:
      - ValueError: When schema validation fails or variables are invalid.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    validate_config(cfg, config_path=config_path, unknown_keys=unknown_keys)
    return cfg
