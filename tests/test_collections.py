from datetime import datetime
from pathlib import Path

import pytest

from driftwood.collections import (
    CollectionApi,
    CollectionRegistry,
    PageCollection,
    posts_collection,
)
from driftwood.config import load_config
from driftwood.content import ContentProcessor, Page


def make_page(input_path, date=None, hidden=False, title=None):
    return Page(
        path=Path(input_path),
        input_path=input_path,
        url=f"/{input_path}/",
        output_path=f"{input_path}/index.html",
        slug=Path(input_path).stem,
        title=title or Path(input_path).stem,
        description="",
        date=date or datetime(2024, 1, 1),
        hidden=hidden,
        layout="post",
        body="",
        source_type="markdown",
    )


def test_page_collection_helpers():
    pages = PageCollection(
        [
            make_page("_posts/a.md", date=datetime(2024, 1, 2)),
            make_page("_posts/b.md", date=datetime(2024, 1, 3), hidden=True),
            make_page("about.md", date=datetime(2024, 1, 1)),
        ]
    )
    assert len(pages) == 3
    assert [p.input_path for p in pages.filter_by_glob("_posts/*.md")] == [
        "_posts/a.md",
        "_posts/b.md",
    ]
    assert [p.input_path for p in pages.visible()] == ["_posts/a.md", "about.md"]
    assert [p.slug for p in pages.sorted(reverse=False)] == ["about", "a", "b"]
    assert [p.slug for p in pages.latest(1)] == ["b"]
    assert isinstance(pages[:2], PageCollection)
    assert pages[0].slug == "a"


def test_posts_collection_excludes_hidden_and_keeps_file_order():
    pages = [
        make_page("_posts/zeta.md", date=datetime(2020, 1, 1)),
        make_page("_posts/alpha.md", hidden=True),
        make_page("_posts/mid.md", date=datetime(2025, 1, 1)),
        make_page("_posts/nested/deep.md"),
        make_page("_posts/page.jinja"),
        make_page("index.md"),
    ]
    posts = posts_collection(CollectionApi(pages))
    assert [p.input_path for p in posts] == ["_posts/zeta.md", "_posts/mid.md"]


def test_posts_collection_two_posts_one_hidden(tmp_path):
    posts_dir = tmp_path / "_posts"
    posts_dir.mkdir()
    (posts_dir / "a.md").write_text("---\ntitle: A\n---\nA", encoding="utf-8")
    (posts_dir / "b.md").write_text("---\ntitle: B\nhidden: true\n---\nB", encoding="utf-8")
    (posts_dir / "c.md").write_text("---\ntitle: C\nhidden: false\n---\nC", encoding="utf-8")

    pages = ContentProcessor(tmp_path).load()
    posts = posts_collection(CollectionApi(pages))
    assert [p.title for p in posts] == ["A", "C"]
    assert all(p.hidden is not True for p in posts)


def test_posts_collection_uses_configured_glob():
    settings = {"collections": {"posts": {"glob": "blog/**/*.md"}}}
    pages = [make_page("blog/2024/a.md"), make_page("_posts/b.md")]
    posts = posts_collection(CollectionApi(pages, settings))
    assert [p.input_path for p in posts] == ["blog/2024/a.md"]


def test_registry_builds_named_collections(tmp_path):
    registry = CollectionRegistry()
    registry.add("posts", posts_collection)
    registry.add("recent", lambda api: api.get_all().latest(1))
    pages = [make_page("_posts/a.md"), make_page("_posts/b.md", date=datetime(2025, 1, 1))]

    collections = registry.build(pages, load_config(tmp_path))
    assert set(collections) == {"all", "posts", "recent"}
    assert registry.names() == ["posts", "recent"]
    assert len(collections["all"]) == 2
    assert [p.slug for p in collections["recent"]] == ["b"]

    with pytest.raises(ValueError):
        registry.add("all", posts_collection)
