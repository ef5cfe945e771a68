"""Custom exceptions for step resolution and execution."""

from typing import List, Optional


class LocalCIError(Exception):
    """Base exception for all localci errors."""

    pass


class ResolverError(LocalCIError):
    """Base class for errors raised while resolving the step tree.

    A resolver error fails the job before any step runs, since no
    execution plan can be built from an unresolved tree.
    """

    pass


class ActionNotFoundError(ResolverError):
    """Raised when an action reference cannot be found.

    Attributes:
        uses: The 'uses' reference that failed to resolve
        searched_paths: List of paths that were searched
    """

    def __init__(
        self,
        uses: str,
        searched_paths: Optional[List[str]] = None,
        message: Optional[str] = None,
    ):
        self.uses = uses
        self.searched_paths = searched_paths or []

        if message:
            super().__init__(message)
        else:
            paths_info = ""
            if self.searched_paths:
                paths_info = "\nSearched paths:\n  " + "\n  ".join(self.searched_paths)
            super().__init__(f"Action not found: {uses}{paths_info}")


class ActionParseError(ResolverError):
    """Raised when an action or step definition is invalid.

    Attributes:
        source: File path or step reference that failed to parse
        parse_error: The underlying parse error message
    """

    def __init__(self, source: str, parse_error: str):
        self.source = source
        self.parse_error = parse_error
        super().__init__(f"Failed to parse {source}: {parse_error}")


class CircularDependencyError(ResolverError):
    """Raised when a composite action references itself, directly or not.

    Attributes:
        chain: The dependency chain that forms the cycle
    """

    def __init__(self, message: str, chain: Optional[List[str]] = None):
        self.chain = chain or []
        super().__init__(message)


class MaxDepthExceededError(ResolverError):
    """Raised when composite action nesting exceeds the maximum depth.

    Attributes:
        depth: The depth at which the error occurred
        max_depth: The maximum allowed depth
    """

    def __init__(
        self,
        message: str,
        depth: Optional[int] = None,
        max_depth: Optional[int] = None,
    ):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(message)


class RequiredInputMissingError(ResolverError):
    """Raised when a required action input is not provided.

    Attributes:
        input_name: Name of the missing required input
        uses: The action reference declaring the input
    """

    def __init__(self, input_name: str, uses: str):
        self.input_name = input_name
        self.uses = uses
        super().__init__(f"Required input '{input_name}' not provided for action '{uses}'")


class ProtocolParseError(LocalCIError):
    """Raised when a step writes malformed environment-file content.

    Always fatal to the owning step; never downgraded by continue-on-error.

    Attributes:
        file_path: The offending file
        line_number: 1-based line number of the offending line
        reason: What was wrong with it
    """

    def __init__(self, file_path: str, line_number: int, reason: str):
        self.file_path = file_path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{file_path}:{line_number}: {reason}")


class StepTimeoutError(LocalCIError):
    """Raised when a step exceeds its timeout-minutes deadline."""

    def __init__(self, step_key: str, timeout: float):
        self.step_key = step_key
        self.timeout = timeout
        super().__init__(f"Step '{step_key}' exceeded its timeout of {timeout:g}s")


class DuplicateResultError(LocalCIError):
    """Raised when a step result is recorded twice (programmer error)."""

    def __init__(self, step_key: str):
        self.step_key = step_key
        super().__init__(f"Result for step '{step_key}' has already been recorded")


class InvalidTransitionError(LocalCIError):
    """Raised on an illegal step state transition (programmer error)."""

    pass


class StepCancelledError(LocalCIError):
    """Raised when job cancellation interrupts a running step."""

    def __init__(self, step_key: str):
        self.step_key = step_key
        super().__init__(f"Step '{step_key}' was cancelled")
