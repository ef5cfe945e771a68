"""Step model: resolved step trees, action resolution and execution plans.

Steps reach the engine already resolved. A resolver turns the 'steps:' of a
job into a tree of Step objects, where composite actions own their child
steps:

    ```yaml
    steps:
      - id: setup
        uses: ./.github/actions/setup
        with:
          cache: true
      - run: make test
    ```

build_plan then flattens that tree into a pre queue, a main queue and a
post stack.

Reference kinds:
    - ./path               - Action directory in the workspace
    - docker://image       - Container step
    - owner/repo/path@ref  - Action from the local action cache
"""

from localci.steps.errors import (
    ActionNotFoundError,
    ActionParseError,
    CircularDependencyError,
    DuplicateResultError,
    InvalidTransitionError,
    LocalCIError,
    MaxDepthExceededError,
    ProtocolParseError,
    RequiredInputMissingError,
    ResolverError,
    StepCancelledError,
    StepTimeoutError,
)
from localci.steps.plan import (
    CompositeGroup,
    ExecutionPlan,
    PlanUnit,
    TimelineEntry,
    build_plan,
    qualify,
)
from localci.steps.resolver import ActionResolver, LocalActionResolver
from localci.steps.types import (
    ActionEntrypoints,
    JobResult,
    ResolutionState,
    Runnable,
    RunnableKind,
    Stage,
    Step,
    StepKind,
    StepResult,
    StepStatus,
)
from localci.steps.validator import (
    InputValidator,
    get_validator,
    input_env,
    stringify_input,
    validate_inputs,
)

__all__ = [
    # Types
    "ActionEntrypoints",
    "JobResult",
    "ResolutionState",
    "Runnable",
    "RunnableKind",
    "Stage",
    "Step",
    "StepKind",
    "StepResult",
    "StepStatus",
    # Plan
    "CompositeGroup",
    "ExecutionPlan",
    "PlanUnit",
    "TimelineEntry",
    "build_plan",
    "qualify",
    # Resolver
    "ActionResolver",
    "LocalActionResolver",
    # Validator
    "InputValidator",
    "get_validator",
    "input_env",
    "stringify_input",
    "validate_inputs",
    # Errors
    "LocalCIError",
    "ResolverError",
    "ActionNotFoundError",
    "ActionParseError",
    "CircularDependencyError",
    "MaxDepthExceededError",
    "RequiredInputMissingError",
    "ProtocolParseError",
    "StepTimeoutError",
    "StepCancelledError",
    "DuplicateResultError",
    "InvalidTransitionError",
]
