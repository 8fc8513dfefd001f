import re
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

PARAMETER_TYPES = ("string", "number", "boolean", "array", "object")

_PLACEHOLDER_PATTERN = "${{{name}}}"


class ParameterValidationError(ValueError):
    """Raised when a template parameter definition is malformed."""


class DependencyValidationError(ValueError):
    """Raised when template dependencies are missing or form a cycle."""


def matches_type(value: Any, type_name: str) -> bool:
    if type_name == "string":
        return isinstance(value, str)
    if type_name == "number":
        return isinstance(value, int | float) and not isinstance(value, bool)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "array":
        return isinstance(value, list | tuple)
    if type_name == "object":
        return isinstance(value, Mapping)
    return False


def _is_number(value: Any) -> bool:
    return matches_type(value, "number")


def validate_parameters(parameters: Any) -> None:
    """Check a list of parameter definitions, raising on the first malformed entry."""
    if not isinstance(parameters, list):
        raise ParameterValidationError("Parameters must be an array")

    for param in parameters:
        if not isinstance(param, Mapping):
            raise ParameterValidationError("Parameter must have a valid name")

        name = param.get("name")
        if not name or not isinstance(name, str):
            raise ParameterValidationError("Parameter must have a valid name")

        type_name = param.get("type")
        if type_name not in PARAMETER_TYPES:
            raise ParameterValidationError("Parameter must have a valid type")

        description = param.get("description")
        if description and not isinstance(description, str):
            raise ParameterValidationError("Parameter description must be a string")

        if "default" in param and param["default"] is not None:
            if not matches_type(param["default"], type_name):
                raise ParameterValidationError(f"Default value for {name} must be a {type_name}")

        constraints = param.get("constraints")
        if constraints:
            _validate_constraints(constraints)


def _validate_constraints(constraints: Any) -> None:
    if not isinstance(constraints, Mapping):
        raise ParameterValidationError("Parameter constraints must be an object")

    if constraints.get("min") is not None and not _is_number(constraints["min"]):
        raise ParameterValidationError("Minimum constraint must be a number")

    if constraints.get("max") is not None and not _is_number(constraints["max"]):
        raise ParameterValidationError("Maximum constraint must be a number")

    pattern = constraints.get("pattern")
    if pattern:
        if not isinstance(pattern, str):
            raise ParameterValidationError("Pattern constraint must be a regular expression")
        try:
            re.compile(pattern)
        except re.error as e:
            raise ParameterValidationError("Pattern constraint must be a regular expression") from e

    if constraints.get("enum") is not None and not isinstance(constraints["enum"], list):
        raise ParameterValidationError("Enum constraint must be an array")


def validate_parameter_values(parameters: list[dict[str, Any]], values: Mapping[str, Any]) -> list[str]:
    """Check supplied values against parameter definitions; returns every problem found."""
    errors: list[str] = []

    for param in parameters:
        name = param["name"]
        if name not in values:
            if param.get("required"):
                errors.append(f"Missing required parameter: {name}")
            continue

        value = values[name]
        if value is None:
            continue

        type_name = param.get("type")
        if not matches_type(value, type_name):
            article = "an" if type_name in ("array", "object") else "a"
            errors.append(f"Parameter {name} must be {article} {type_name}")
            continue

        errors.extend(_constraint_errors(name, value, param.get("constraints") or {}))

    return errors


def _constraint_errors(name: str, value: Any, constraints: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    measured = len(value) if isinstance(value, str | list | tuple) else value

    minimum = constraints.get("min")
    if minimum is not None and _is_number(measured) and measured < minimum:
        errors.append(f"Validation failed for {name}: must be at least {minimum}")

    maximum = constraints.get("max")
    if maximum is not None and _is_number(measured) and measured > maximum:
        errors.append(f"Validation failed for {name}: must be at most {maximum}")

    pattern = constraints.get("pattern")
    if pattern and isinstance(value, str) and not re.fullmatch(pattern, value):
        errors.append(f"Validation failed for {name}: does not match pattern {pattern}")

    allowed = constraints.get("enum")
    if allowed is not None and value not in allowed:
        errors.append(f"Validation failed for {name}: must be one of {allowed}")

    return errors


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def render_template(content: str, parameters: list[dict[str, Any]], values: Mapping[str, Any]) -> str:
    """Substitute `${name}` placeholders with supplied values or parameter defaults."""
    code = content
    for param in parameters:
        name = param["name"]
        value = values.get(name, param.get("default"))
        code = code.replace(_PLACEHOLDER_PATTERN.format(name=name), _format_value(value))
    return code


DependencyLookup = Callable[[str], list[str] | None]


def validate_dependencies(template_key: str, dependencies: list[str], lookup: DependencyLookup) -> None:
    """Walk the dependency graph breadth-first and reject missing or circular dependencies.

    `lookup` returns the dependency keys of a template, or None when no such template exists.
    """
    queue = deque(dependencies)
    seen: set[str] = set()
    while queue:
        key = queue.popleft()
        if key == template_key:
            raise DependencyValidationError(f"Circular dependency detected: {key}")
        if key in seen:
            continue
        nested = lookup(key)
        if nested is None:
            raise DependencyValidationError(f"Dependency {key} not found")
        seen.add(key)
        queue.extend(nested)


def resolve_dependencies(template_key: str, dependencies: list[str], lookup: DependencyLookup) -> list[str]:
    """Transitive dependencies of a template in breadth-first order, each key once."""
    resolved: list[str] = []
    visited = {template_key}
    queue = deque(dependencies)
    while queue:
        key = queue.popleft()
        if key in visited:
            continue
        nested = lookup(key)
        if nested is None:
            raise DependencyValidationError(f"Dependency {key} not found")
        visited.add(key)
        resolved.append(key)
        queue.extend(dep for dep in nested if dep not in visited)
    return resolved
