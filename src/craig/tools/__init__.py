"""
Tool contract for CRAIG.

A tool is something the agent can both describe to the reasoning backend and call.  Tools are
owned by an :class:`~craig.agent.agent_loop.Agent` for the lifetime of a conversation; messages only
refer to them by name.

Plain functions can be turned into tools with the :func:`function_tool` decorator:

    @function_tool("add")
    def add(a: int, b: int) -> int:
        \"\"\"Return the sum of two integers.\"\"\"
        return a + b
"""

import inspect
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    TypedDict,
    get_type_hints,
)

logger = logging.getLogger(__name__)


class BaseTool(ABC):
    """A runnable object that can be described to and called by an agent."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The name the agent uses to call the tool (snake_case)."""

    @abstractmethod
    def description(self) -> List[str]:
        """Short bullet points describing the tool and the parameters to provide."""

    @abstractmethod
    def call(self, args: Mapping[str, Any]) -> str:
        """
        Call the tool and return a formatted response.

        The values of *args* are whatever the backend's JSON decoded to.  Raise any exception to
        report a failure; the agent turns it into a textual tool response.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class ParameterInfo(TypedDict):
    """
    Information about a tool parameter.
    """

    type: str
    required: bool


def get_parameter_schema(func: Callable) -> Mapping[str, ParameterInfo]:
    """Extract parameter names, types and whether they are required from *func*'s signature."""
    sig = inspect.signature(func)
    type_hints = get_type_hints(func)
    params: Dict[str, ParameterInfo] = {}
    for param_name, param in sig.parameters.items():
        param_type = type_hints.get(param_name, "any")
        param_type_name = getattr(param_type, "__name__", str(param_type))
        params[param_name] = ParameterInfo(
            type=param_type_name, required=param.default == inspect.Parameter.empty
        )
    return params


class FunctionTool(BaseTool):
    """Adapt a plain function taking keyword arguments into a :class:`BaseTool`."""

    def __init__(self, name: str, fn: Callable[..., Any], description: List[str] | None = None):
        self._name = name
        self._fn = fn
        self._description = description

    @property
    def name(self) -> str:
        return self._name

    def description(self) -> List[str]:
        if self._description is not None:
            return list(self._description)

        lines = [inspect.getdoc(self._fn) or self._name]
        for param_name, info in get_parameter_schema(self._fn).items():
            required = "required" if info["required"] else "optional"
            lines.append(f"Parameter `{param_name}` ({info['type']}, {required})")
        return lines

    def call(self, args: Mapping[str, Any]) -> str:
        logger.debug("Calling function tool '%s' with args=%s", self._name, args)
        result = self._fn(**args)
        return result if isinstance(result, str) else str(result)


def function_tool(name: str, description: List[str] | None = None) -> Callable:
    """
    Turn the decorated function into a :class:`FunctionTool` called *name*.

    Parameters
    ----------
    name: str
        The name the agent uses to call the tool.
    description: list[str] | None
        Bullet points shown to the backend.  If *None*, they are built from the docstring and the
        function signature.
    Returns
    -------
    Callable
        A decorator returning the :class:`FunctionTool`.
    """

    def wrapper(fn: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(name, fn, description)

    return wrapper


@function_tool("echo")
def echo_tool(text: str) -> str:
    """Echo the input text back to the caller."""
    return text


DEFAULT_TOOLS: List[BaseTool] = [echo_tool]
"""Tools given to agents created by the API and CLI."""
