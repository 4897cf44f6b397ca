"""
Source collaborator interface.

Every catalog source (primary, secondary, custom) answers raw path
requests and, optionally, cheap existence probes and paged listings.
Optional abilities are declared once at construction as capabilities,
so the orchestrator never inspects a source for methods at call time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from apicatalog.orchestrator.pagination import PageChunk

T = TypeVar("T")


@dataclass(frozen=True)
class Supported(Generic[T]):
    """The source offers this ability through ``impl``."""

    impl: T


@dataclass(frozen=True)
class Unsupported:
    """The source does not offer this ability."""

    reason: str = ""


Capability = Union[Supported[T], Unsupported]

ProbeFn = Callable[[str], Awaitable[bool]]
PagerFn = Callable[[int, int], Awaitable[PageChunk]]


@dataclass(frozen=True)
class ExistenceProbes:
    """Probe pair used to gate single-entity lookups."""

    has_provider: ProbeFn
    has_api: ProbeFn


class CatalogSource(ABC):
    """
    One upstream catalog.

    Paths follow the directory layout shared by every source::

        /providers.json
        /{provider}.json
        /{provider}/services.json
        /specs/{provider}/{api}.json
        /specs/{provider}/{service}/{api}.json
        /list.json
        /metrics.json

    Attributes:
        name: Source name (primary/secondary/custom)
        probes: Supported(ExistenceProbes) or Unsupported
        pager: Supported(fetch_page) or Unsupported
    """

    name: str = "source"

    def __init__(self, probes: Capability, pager: Capability):
        self.probes = probes
        self.pager = pager

    @abstractmethod
    async def fetch_raw(self, path: str) -> Any:
        """
        Fetch decoded JSON for a catalog path or absolute URL.

        Raises:
            NotFoundError: If the source has nothing at ``path``
            APIError: On any other failure
        """

    def reload(self) -> None:
        """Forget anything memoized from the underlying catalog."""

    async def close(self) -> None:
        """Release network or file handles."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"probes={type(self.probes).__name__}, pager={type(self.pager).__name__})"
        )
