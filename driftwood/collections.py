from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any

from .content import Page
from .utils import matches_glob

POSTS_GLOB = "_posts/*.md"


class PageCollection(Sequence[Page]):
    """Lightweight helper for working with lists of Pages in templates and code."""

    def __init__(self, pages: Iterable[Page]):
        self._pages = list(pages)

    def __iter__(self) -> Iterator[Page]:
        return iter(self._pages)

    def __len__(self) -> int:
        return len(self._pages)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return PageCollection(self._pages[item])
        return self._pages[item]

    def filter_by_glob(self, glob: str) -> PageCollection:
        return PageCollection(p for p in self._pages if matches_glob(p.input_path, glob))

    def visible(self) -> PageCollection:
        return PageCollection(p for p in self._pages if not p.hidden)

    def sorted(self, reverse: bool = True) -> PageCollection:
        """Sort pages by date, then by input path.

        Args:
            reverse: If True (default), newest first.
        """
        return PageCollection(
            sorted(self._pages, key=lambda p: (p.date, p.input_path), reverse=reverse)
        )

    def latest(self, count: int = 5) -> PageCollection:
        return self.sorted()[:count]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({len(self._pages)} pages)"


class CollectionApi:
    """View over every loaded page, handed to collection functions."""

    def __init__(self, pages: Iterable[Page], settings: dict[str, Any] | None = None):
        self._all = PageCollection(pages)
        self.settings = settings or {}

    def get_all(self) -> PageCollection:
        return self._all

    def get_filtered_by_glob(self, glob: str) -> PageCollection:
        return self._all.filter_by_glob(glob)


def posts_collection(api: CollectionApi) -> PageCollection:
    """Published posts: Markdown files under the posts glob that are not hidden.

    Order is discovery order, which is path-lexical.
    """
    glob = api.settings.get("collections", {}).get("posts", {}).get("glob", POSTS_GLOB)
    return api.get_filtered_by_glob(glob).visible()


class CollectionRegistry:
    """Named collection functions, evaluated once per build."""

    def __init__(self):
        self._functions: dict[str, Callable[[CollectionApi], Iterable[Page]]] = {}

    def add(self, name: str, fn: Callable[[CollectionApi], Iterable[Page]]) -> None:
        if name == "all":
            raise ValueError("'all' is a reserved collection name")
        self._functions[name] = fn

    def names(self) -> list[str]:
        return list(self._functions)

    def build(
        self, pages: Iterable[Page], settings: dict[str, Any] | None = None
    ) -> dict[str, PageCollection]:
        api = CollectionApi(pages, settings)
        collections = {"all": api.get_all()}
        for name, fn in self._functions.items():
            collections[name] = PageCollection(fn(api))
        return collections
