"""finity - declarative finite state machines with validated states and managed effects.

Quick Start:
    from finity import Spec, create_machine

    spec = Spec("traffic")
    spec.state("red").state("yellow").state("green")
    spec.action("next")
    spec.transition(from_=["red"], actions=["next"], to="green")
    spec.transition(from_=["green"], actions=["next"], to="yellow")
    spec.transition(from_=["yellow"], actions=["next"], to="red")
    spec.set_initial("red")

    fsm = create_machine(spec)
    fsm.dispatch("next")
    assert fsm.state == "green"

For document-driven usage:
    from finity import ConfigLoader, create_machine

    fsm = create_machine(ConfigLoader.load_machine("machine.yaml"))
"""

from .config_loader import ConfigLoader
from .effects import EffectContext
from .error_channel import ErrorChannel, SubscriptionHandle
from .errors import (
    ConfigError,
    DefinitionError,
    FinityError,
    HandlerError,
    IllegalDestinationError,
    ImportError_,
    LifecycleError,
    TransitionNotFoundError,
    ValidationError,
)
from .explain import Diagnostic, SpecExplanation, explain
from .machine import InternalState, Machine, StateMachine, create_machine
from .spec import CREATE, DESTROY, DESTROYED, Spec, SpecOptions, StateValue, define
from .transition import TransitionRecord, transition_state
from .visualize import spec_to_diagram, visualize

__all__ = [
    # Core
    "Spec",
    "SpecOptions",
    "StateValue",
    "define",
    "create_machine",
    "Machine",
    "StateMachine",
    "InternalState",
    "TransitionRecord",
    "EffectContext",
    "ErrorChannel",
    "SubscriptionHandle",
    # Built-in ids
    "CREATE",
    "DESTROY",
    "DESTROYED",
    # Config
    "ConfigLoader",
    # Errors
    "FinityError",
    "DefinitionError",
    "ValidationError",
    "TransitionNotFoundError",
    "IllegalDestinationError",
    "LifecycleError",
    "HandlerError",
    "ConfigError",
    "ImportError_",
    # Introspection
    "explain",
    "SpecExplanation",
    "Diagnostic",
    # Visualization
    "visualize",
    "spec_to_diagram",
]

# Internal imports available but not in __all__:
# - transition_state: the pure transition engine, for alternative machine adapters
# - finity.effects.reconcile: the effect reconciler, for the same purpose
# - finity.schema: schema combinators (import from the submodule)

__version__ = "0.1.0"
