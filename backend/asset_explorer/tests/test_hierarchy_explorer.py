"""
Unit tests for HierarchyExplorer.

Tests:
- Expand / collapse / re-expand is a cache hit
- Collapse keeps descendant expansion state
- Multi-page listings are walked to the end
- Drill-down selection, deselection and breadcrumbs
- Per-node failure isolation and reset

Run with: python -m pytest asset_explorer/tests/test_hierarchy_explorer.py -v
"""

from collections import Counter

import pytest

from asset_explorer.data_models import PaginationMeta
from asset_explorer.errors import HierarchyPathNotFound
from asset_explorer.hierarchy_explorer import HierarchyExplorer, HierarchyLoader
from asset_explorer.hierarchy_models import (
    AssetNode,
    CacheStatus,
    EventNode,
    HierarchyPath,
    Page,
    ProcedureNode,
    SubjectNode,
)


# =============================================================================
# Test Fixtures
# =============================================================================

def _page(items, page, limit):
    start = (page - 1) * limit
    total_pages = -(-len(items) // limit) if items else 0
    return Page(
        data=items[start:start + limit],
        meta=PaginationMeta(page=page, limit=limit, total=len(items), total_pages=total_pages),
    )


class FakeLoader(HierarchyLoader):
    """In-memory hierarchy: every site has `subjects` subjects, two events each, and so on."""

    def __init__(self, subjects=3, missing_sites=()):
        self.subject_count = subjects
        self.missing_sites = set(missing_sites)
        self.calls = Counter()

    async def list_subjects(self, site_id, page, limit):
        self.calls[("subjects", site_id)] += 1
        if site_id in self.missing_sites:
            raise HierarchyPathNotFound("Site not found", level="site")
        items = [SubjectNode(id=i, number=f"{i:04d}") for i in range(1, self.subject_count + 1)]
        return _page(items, page, limit)

    async def list_events(self, site_id, subject_id, page, limit):
        self.calls[("events", site_id, subject_id)] += 1
        items = [EventNode(id=subject_id * 10 + i, name=f"Visit {i}") for i in (1, 2)]
        return _page(items, page, limit)

    async def list_procedures(self, site_id, subject_id, event_id, page, limit):
        self.calls[("procedures", site_id, subject_id, event_id)] += 1
        return _page([ProcedureNode(id=event_id * 10 + 1, name="Gait")], page, limit)

    async def list_assets(self, site_id, subject_id, event_id, procedure_id, page, limit):
        self.calls[("assets", site_id, subject_id, event_id, procedure_id)] += 1
        return _page([AssetNode(id=procedure_id * 10 + 1, filename="clip.mp4")], page, limit)


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def explorer(loader):
    return HierarchyExplorer(loader)


# =============================================================================
# Test Expand / Collapse
# =============================================================================

class TestExpandCollapse:
    """Tree disclosure and caching."""

    @pytest.mark.asyncio
    async def test_collapse_and_reexpand_is_cache_hit(self, explorer, loader):
        """Expand site 42, collapse, expand again: one subjects fetch."""
        site = HierarchyPath.of(42)

        assert explorer.toggle_expand(site) is True
        await explorer.settle()
        loaded = explorer.children(site)

        assert explorer.toggle_expand(site) is False
        assert explorer.toggle_expand(site) is True
        await explorer.settle()

        assert loader.calls[("subjects", 42)] == 1
        assert explorer.children(site).status is CacheStatus.LOADED
        assert explorer.children(site).data is loaded.data
        assert [node.number for node in loaded.data] == ["0001", "0002", "0003"]

    @pytest.mark.asyncio
    async def test_expand_while_loading_does_not_refetch(self, explorer, loader):
        site = HierarchyPath.of(42)

        explorer.toggle_expand(site)
        explorer.toggle_expand(site)
        explorer.toggle_expand(site)
        await explorer.settle()

        assert loader.calls[("subjects", 42)] == 1

    @pytest.mark.asyncio
    async def test_collapse_keeps_descendant_state(self, explorer):
        site, subject = HierarchyPath.of(42), HierarchyPath.of(42, 1)
        explorer.toggle_expand(site)
        explorer.toggle_expand(subject)
        await explorer.settle()

        explorer.toggle_expand(site)

        assert explorer.is_expanded(subject)
        assert not explorer.is_visible(subject)
        assert explorer.visible_paths() == []
        assert explorer.children(subject).status is CacheStatus.LOADED

        explorer.toggle_expand(site)

        assert explorer.is_visible(subject)
        assert set(explorer.visible_paths()) == {site, subject}

    @pytest.mark.asyncio
    async def test_levels_use_separate_caches(self, explorer, loader):
        path = HierarchyPath.of(42, 1, 11, 111)
        for prefix in path.prefixes():
            explorer.toggle_expand(prefix)
        await explorer.settle()

        assert len(explorer.subjects) == 1
        assert len(explorer.events) == 1
        assert len(explorer.procedures) == 1
        assert len(explorer.assets) == 1
        assert explorer.children(path).data[0].id == 1111

    @pytest.mark.asyncio
    async def test_all_pages_are_walked(self):
        loader = FakeLoader(subjects=250)
        explorer = HierarchyExplorer(loader, page_size=100)
        site = HierarchyPath.of(7)

        explorer.toggle_expand(site)
        await explorer.settle()

        assert loader.calls[("subjects", 7)] == 3
        assert len(explorer.children(site).data) == 250

    @pytest.mark.asyncio
    async def test_failure_is_isolated_to_node(self):
        loader = FakeLoader(missing_sites={99})
        explorer = HierarchyExplorer(loader)

        explorer.toggle_expand(HierarchyPath.of(42))
        explorer.toggle_expand(HierarchyPath.of(99))
        await explorer.settle()

        failed = explorer.children(HierarchyPath.of(99))
        assert failed.status is CacheStatus.ERRORED
        assert isinstance(failed.error, HierarchyPathNotFound)
        assert explorer.children(HierarchyPath.of(42)).status is CacheStatus.LOADED

    @pytest.mark.asyncio
    async def test_invalidate_then_expand_reloads(self, explorer, loader):
        site = HierarchyPath.of(42)
        explorer.toggle_expand(site)
        await explorer.settle()

        explorer.invalidate(site)
        explorer.toggle_expand(site)
        explorer.toggle_expand(site)
        await explorer.settle()

        assert loader.calls[("subjects", 42)] == 2


# =============================================================================
# Test Selection
# =============================================================================

class TestSelection:
    """Drill-down selection and breadcrumbs."""

    @pytest.mark.asyncio
    async def test_drill_down_and_breadcrumbs(self, explorer):
        explorer.select(HierarchyPath.of(42), "Site 042")
        explorer.select(HierarchyPath.of(42, 7), "0007")
        explorer.select(HierarchyPath.of(42, 7, 71), "Baseline")
        await explorer.settle()

        crumbs = explorer.breadcrumbs()

        assert [crumb.label for crumb in crumbs] == ["Sites", "Site 042", "Subject 0007", "Baseline"]
        assert [crumb.level for crumb in crumbs] == ["sites", "site", "subject", "event"]
        assert crumbs[-1].path == HierarchyPath.of(42, 7, 71)
        assert explorer.selected_ids == [42, 7, 71]
        assert explorer.children(HierarchyPath.of(42, 7, 71)).status is CacheStatus.LOADED

    @pytest.mark.asyncio
    async def test_switching_subject_keeps_caches(self, explorer, loader):
        explorer.select(HierarchyPath.of(42), "Site 042")
        explorer.select(HierarchyPath.of(42, 7), "0007")
        await explorer.settle()
        explorer.select(HierarchyPath.of(42, 8), "0008")
        await explorer.settle()

        entry = explorer.select(HierarchyPath.of(42, 7), "0007")

        assert entry.status is CacheStatus.LOADED
        assert loader.calls[("events", 42, 7)] == 1
        assert explorer.selected_ids == [42, 7]
        assert [crumb.label for crumb in explorer.breadcrumbs()] == ["Sites", "Site 042", "Subject 0007"]

    @pytest.mark.asyncio
    async def test_reselecting_deselects_deeper_levels(self, explorer):
        explorer.select(HierarchyPath.of(42), "Site 042")
        explorer.select(HierarchyPath.of(42, 7), "0007")

        result = explorer.select(HierarchyPath.of(42, 7))
        await explorer.settle()

        assert result is None
        assert explorer.selected_ids == [42]

    @pytest.mark.asyncio
    async def test_selecting_other_site_replaces_selection(self, explorer):
        explorer.select(HierarchyPath.of(42), "Site 042")
        explorer.select(HierarchyPath.of(42, 7), "0007")
        explorer.select(HierarchyPath.of(43), "Site 043")
        await explorer.settle()

        assert explorer.selected_path == HierarchyPath.of(43)
        assert [crumb.label for crumb in explorer.breadcrumbs()] == ["Sites", "Site 043"]

    @pytest.mark.asyncio
    async def test_missing_label_uses_id(self, explorer):
        explorer.select(HierarchyPath.of(42, 7))
        await explorer.settle()

        assert [crumb.label for crumb in explorer.breadcrumbs()] == ["Sites", "42", "Subject 7"]

    @pytest.mark.asyncio
    async def test_navigate_breadcrumb(self, explorer):
        explorer.select(HierarchyPath.of(42), "Site 042")
        explorer.select(HierarchyPath.of(42, 7), "0007")
        await explorer.settle()

        explorer.navigate_breadcrumb(1)
        assert explorer.selected_ids == [42]
        assert explorer.children(HierarchyPath.of(42, 7)).status is CacheStatus.LOADED

        explorer.navigate_breadcrumb(0)
        assert explorer.selected_path is None
        assert explorer.breadcrumbs()[0].label == "Sites"

    def test_negative_breadcrumb_index(self, explorer):
        with pytest.raises(ValueError):
            explorer.navigate_breadcrumb(-1)

    @pytest.mark.asyncio
    async def test_reset(self, explorer):
        explorer.toggle_expand(HierarchyPath.of(42))
        explorer.select(HierarchyPath.of(42), "Site 042")
        await explorer.settle()

        explorer.reset()

        assert explorer.visible_paths() == []
        assert explorer.selected_path is None
        assert len(explorer.subjects) == 0


class TestHierarchyPath:
    """Structural keys."""

    def test_separator_characters_do_not_collide(self):
        assert HierarchyPath.of("a/b", "c") != HierarchyPath.of("a", "b/c")
        assert hash(HierarchyPath.of(1, 2)) == hash(HierarchyPath.of(1, 2))

    def test_accessors(self):
        path = HierarchyPath.of(1, 2, 3)

        assert (path.site_id, path.subject_id, path.event_id, path.procedure_id) == (1, 2, 3, None)
        assert path.parent == HierarchyPath.of(1, 2)
        assert path.child(4) == HierarchyPath.of(1, 2, 3, 4)
        assert HierarchyPath.of(1).is_ancestor_of(path)
        assert not path.is_ancestor_of(path)
        assert str(path) == "1/2/3"

    @pytest.mark.parametrize("ids", [(), (1, 2, 3, 4, 5), (1, None)])
    def test_invalid_paths(self, ids):
        with pytest.raises(ValueError):
            HierarchyPath(ids)
