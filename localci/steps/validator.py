"""Input validation and boundary stringification for actions."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from localci.steps.errors import RequiredInputMissingError

_INPUT_NAME_PATTERN = re.compile(r"[^A-Z0-9-]")


def stringify_input(value: Any) -> str:
    """Canonical string form of an input value at the process boundary.

    Booleans render as the literal text true/false, never "1" or "True".
    This is applied exactly once, when the value is exposed to a step's
    process; nothing downstream re-coerces it.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def input_env_name(name: str) -> str:
    """Environment variable name under which an input is exposed."""
    return "INPUT_" + _INPUT_NAME_PATTERN.sub("_", name.upper())


def input_env(inputs: Dict[str, Any]) -> Dict[str, str]:
    """Build the INPUT_* environment for a set of input values."""
    return {input_env_name(name): stringify_input(value) for name, value in inputs.items()}


class InputValidator:
    """Validates 'with:' inputs against an action's declared inputs.

    Handles required input checking and default values.
    """

    def validate(
        self,
        uses: str,
        declared: Dict[str, Dict[str, Any]],
        provided: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Validate and prepare inputs for an action.

        This method:
        1. Checks that all required inputs are provided
        2. Applies default values for missing optional inputs
        3. Passes through undeclared inputs unchanged

        Args:
            uses: Action reference (for error messages)
            declared: Input declarations from the action metadata
            provided: Input values from the step's 'with:' mapping

        Returns:
            Complete input dictionary with defaults applied

        Raises:
            RequiredInputMissingError: If a required input without default is missing
        """
        provided = dict(provided or {})
        result: Dict[str, Any] = {}

        for name, spec in declared.items():
            spec = spec or {}
            if name in provided and provided[name] is not None:
                result[name] = provided.pop(name)
                continue
            provided.pop(name, None)
            if "default" in spec:
                result[name] = spec["default"]
            elif _is_required(spec.get("required", False)):
                raise RequiredInputMissingError(input_name=name, uses=uses)

        result.update(provided)
        return result


def _is_required(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


# Global validator instance
_validator: Optional[InputValidator] = None


def get_validator() -> InputValidator:
    """Get the global InputValidator instance."""
    global _validator
    if _validator is None:
        _validator = InputValidator()
    return _validator


def validate_inputs(
    uses: str,
    declared: Dict[str, Dict[str, Any]],
    provided: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Convenience function to validate action inputs."""
    return get_validator().validate(uses, declared, provided)
