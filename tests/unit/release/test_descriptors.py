"""Unit tests for the release descriptor store."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.release.descriptors import DescriptorStore
from src.release.errors import InputError
from src.release.models import ImageReference, ReleaseDescriptor


def _descriptor(tag: str = "v1", name: str = "shop") -> ReleaseDescriptor:
    return ReleaseDescriptor(
        name=name,
        namespace="shop-prod",
        chart="infra/helm/app",
        images={
            "frontend": ImageReference(repository="shop-frontend", tag=tag),
            "backend": ImageReference(repository="shop-backend", tag=tag),
        },
        overrides={"backend.replicaCount": 2},
    )


class TestDescriptorStore:
    def test_register_assigns_increasing_versions(self) -> None:
        store = DescriptorStore()

        first = store.register(_descriptor("v1"))
        second = store.register(_descriptor("v2"))

        assert (first.version, second.version) == (1, 2)
        assert store.get("shop", "shop-prod", 2) == second

    def test_versions_are_per_target(self) -> None:
        store = DescriptorStore()

        store.register(_descriptor(name="shop"))
        other = store.register(_descriptor(name="blog"))

        assert other.version == 1

    def test_get_unknown_version_raises(self) -> None:
        store = DescriptorStore()
        store.register(_descriptor())

        with pytest.raises(InputError):
            store.get("shop", "shop-prod", 7)

    def test_registered_descriptor_is_immutable(self) -> None:
        stored = DescriptorStore().register(_descriptor())

        with pytest.raises(ValueError):
            stored.chart = "other"  # type: ignore[misc]

    def test_descriptors_survive_reload(self, tmp_path: Path) -> None:
        root = tmp_path / "descriptors"
        DescriptorStore(root).register(_descriptor("v1"))
        DescriptorStore(root).register(_descriptor("v2"))

        reloaded = DescriptorStore(root)

        assert reloaded.get("shop", "shop-prod", 1).images["frontend"].tag == "v1"
        assert reloaded.get("shop", "shop-prod", 2).images["frontend"].tag == "v2"
        assert (root / "shop-prod" / "shop" / "v0002.json").is_file()

    def test_existing_version_file_is_never_rewritten(self, tmp_path: Path) -> None:
        root = tmp_path / "descriptors"
        store = DescriptorStore(root)
        store.register(_descriptor("v1"))
        path = root / "shop-prod" / "shop" / "v0001.json"
        original = path.read_text()

        # A second store that missed the first registration must not clobber it
        stale = DescriptorStore(tmp_path / "elsewhere")
        stale._root = root

        stored = stale.register(_descriptor("v9"))

        assert stored.version == 2
        assert path.read_text() == original

    def test_registrations_of_another_store_are_visible(self, tmp_path: Path) -> None:
        root = tmp_path / "descriptors"
        ours, theirs = DescriptorStore(root), DescriptorStore(root)
        theirs.register(_descriptor("v1"))

        assert ours.get("shop", "shop-prod", 1).images["backend"].tag == "v1"
        assert ours.register(_descriptor("v2")).version == 2

    def test_unreadable_descriptor_file_is_skipped(self, tmp_path: Path) -> None:
        root = tmp_path / "descriptors"
        DescriptorStore(root).register(_descriptor())
        (root / "shop-prod" / "shop" / "v0002.json").write_text("{not json")

        reloaded = DescriptorStore(root)

        assert reloaded.get("shop", "shop-prod", 1).version == 1
        with pytest.raises(InputError):
            reloaded.get("shop", "shop-prod", 2)
