import re
from collections.abc import Mapping
from typing import Any

from codeforegx.models import PromptTestResult

VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*\}\}")


def extract_variables(content: str) -> list[str]:
    """Unique `{{variable}}` names in order of first appearance."""
    return list(dict.fromkeys(VARIABLE_PATTERN.findall(content or "")))


def render_prompt(content: str, variables: Mapping[str, Any]) -> str:
    """Replace known `{{variable}}` placeholders; unknown ones are left in place."""

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return str(variables[name])

    return VARIABLE_PATTERN.sub(substitute, content or "")


def dry_run_prompt(content: str, variables: Mapping[str, Any]) -> PromptTestResult:
    names = extract_variables(content)
    return PromptTestResult(
        original=content,
        processed=render_prompt(content, variables),
        variables=names,
        missing=[name for name in names if name not in variables],
    )
