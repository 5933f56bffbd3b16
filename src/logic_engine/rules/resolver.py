"""Field lookup over the payload and the execution context."""

from typing import Any, Mapping, Optional

from .models import ExecutionContext


def resolve_field(
    path: str,
    data: Any,
    context: Optional[ExecutionContext] = None,
) -> Any:
    """
    Resolve a field path to a value, or None when absent.

    Order:
    1. Direct key on the payload (``"user.email"`` may be a literal key)
    2. Direct key on ``context.metadata``
    3. Dot-separated traversal over the payload
    """
    if isinstance(data, Mapping) and path in data:
        return data[path]

    if context is not None and path in context.metadata:
        return context.metadata[path]

    if "." in path:
        return navigate_path(data, path.split("."))

    return None


def navigate_path(data: Any, path: list[str]) -> Any:
    """Walk a list of path segments, stopping at the first missing one."""
    current = data
    for part in path:
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(part)
            except ValueError:
                return None
            if not 0 <= index < len(current):
                return None
            current = current[index]
        else:
            return None

    return current
