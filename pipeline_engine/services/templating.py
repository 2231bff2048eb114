"""Placeholder substitution for automation templates."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def to_camel_case(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


def _render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def build_template_variables(
    entity: Mapping[str, Any] | None,
    stage: Any | None = None,
    pipeline_name: str | None = None,
) -> dict[str, Any]:
    """Flatten entity fields plus stage and pipeline names into template variables.

    Snake-case entity keys are also exposed under their camelCase alias, so
    ``{{first_name}}`` and ``{{firstName}}`` resolve to the same value.
    """
    variables: dict[str, Any] = {}
    for key, value in (entity or {}).items():
        variables[key] = value
        alias = to_camel_case(key)
        variables.setdefault(alias, value)
    if stage is not None:
        variables["stageName"] = stage.name
        variables["stageDescription"] = stage.description
        variables["stageId"] = stage.id
    if pipeline_name is not None:
        variables["pipelineName"] = pipeline_name
    return variables


def personalize_template(template: str | None, variables: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown or null values render as empty strings."""
    if not template:
        return ""
    return PLACEHOLDER_PATTERN.sub(lambda match: _render_value(variables.get(match.group(1))), template)
