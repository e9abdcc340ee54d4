"""Lazily loaded, request-memoized URL entities."""
from collections.abc import Callable
from typing import Any

from fastapi import Request

Loader = Callable[[Request], Any]


class EntityCell:
    """Runs the loader on first access and caches its result or error."""

    def __init__(self, loader: Loader):
        self.loader = loader
        self.loaded = False
        self.entity: Any = None
        self.error: Exception | None = None

    def get(self, request: Request) -> Any:
        if not self.loaded:
            try:
                self.entity = self.loader(request)
            except Exception as exc:
                self.error = exc
            self.loaded = True
        if self.error is not None:
            raise self.error
        return self.entity


def entity_loader(loader: Loader) -> Callable[[Request], None]:
    """Build a dependency that binds ``loader`` to the request.

    Nothing is loaded until ``get_entity`` is called.
    """

    def bind_entity_loader(request: Request) -> None:
        request.state.entity = EntityCell(loader)

    return bind_entity_loader


def get_entity(request: Request) -> Any:
    """Return the request's entity, loading it on first use.

    ``None`` means there is no entity for this request. Load errors are
    raised again on every call.
    """
    cell: EntityCell | None = getattr(request.state, "entity", None)
    if cell is None:
        return None
    return cell.get(request)
