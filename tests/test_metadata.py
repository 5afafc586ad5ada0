"""Tests for the rule-driven metadata resolver."""

from __future__ import annotations

from pathlib import Path

import pytest

from source_tracking.tracking.errors import UnresolvableComponentError
from source_tracking.tracking.metadata import (
    ComponentIdentity,
    ComponentPaths,
    MetadataResolver,
    MetadataTypeRule,
    PatternMetadataResolver,
)

CLASSES = "force-app/main/default/classes"
LWC = "force-app/main/default/lwc"


@pytest.fixture
def resolver(project: Path) -> PatternMetadataResolver:
    return PatternMetadataResolver(project, ["force-app"])


class TestResolveIdentityForPath:
    def test_apex_class_content(self, resolver):
        assert resolver.resolve_identity_for_path(
            f"{CLASSES}/Foo.cls"
        ) == ComponentIdentity(type="ApexClass", name="Foo")

    def test_apex_class_descriptor(self, resolver):
        identity = resolver.resolve_identity_for_path(
            f"{CLASSES}/Foo.cls-meta.xml"
        )
        assert identity == ComponentIdentity(type="ApexClass", name="Foo")

    def test_absolute_path_inside_project(self, resolver, project):
        identity = resolver.resolve_identity_for_path(
            str(project / CLASSES / "Foo.cls")
        )
        assert identity is not None and identity.name == "Foo"

    def test_bundle_member(self, resolver):
        identity = resolver.resolve_identity_for_path(
            f"{LWC}/myCard/myCard.html"
        )
        assert identity == ComponentIdentity(
            type="LightningComponentBundle", name="myCard"
        )

    def test_descriptor_only_type(self, resolver):
        identity = resolver.resolve_identity_for_path(
            "force-app/main/default/layouts/Account-Account Layout.layout-meta.xml"
        )
        assert identity == ComponentIdentity(
            type="Layout", name="Account-Account Layout"
        )

    def test_outside_package_directories(self, resolver):
        assert resolver.resolve_identity_for_path("scripts/Foo.cls") is None

    def test_outside_project(self, resolver, tmp_path):
        assert (
            resolver.resolve_identity_for_path(str(tmp_path / "elsewhere.cls"))
            is None
        )

    def test_unknown_file(self, resolver):
        assert (
            resolver.resolve_identity_for_path("force-app/README.md") is None
        )

    def test_stray_file_in_type_folder_raises(self, resolver):
        with pytest.raises(UnresolvableComponentError, match="ApexClass folder"):
            resolver.resolve_identity_for_path(f"{CLASSES}/notes.txt")

    def test_stray_file_in_bundle_type_folder_raises(self, resolver):
        with pytest.raises(UnresolvableComponentError):
            resolver.resolve_identity_for_path(f"{LWC}/jsconfig.json")


class TestResolvePathsForIdentity:
    def test_descriptor_first(self, resolver, project, write):
        write(project, f"{CLASSES}/Foo.cls", "class Foo {}")
        write(project, f"{CLASSES}/Foo.cls-meta.xml", "<xml/>")
        paths = resolver.resolve_paths_for_identity("ApexClass", "Foo")
        assert paths.all_paths() == [
            f"{CLASSES}/Foo.cls-meta.xml",
            f"{CLASSES}/Foo.cls",
        ]

    def test_bundle_collects_every_file(self, resolver, project, write):
        write(project, f"{LWC}/myCard/myCard.js", "")
        write(project, f"{LWC}/myCard/myCard.html", "")
        write(project, f"{LWC}/myCard/myCard.js-meta.xml", "")
        paths = resolver.resolve_paths_for_identity(
            "LightningComponentBundle", "myCard"
        )
        assert paths.descriptor_path == f"{LWC}/myCard/myCard.js-meta.xml"
        assert sorted(paths.content_paths) == [
            f"{LWC}/myCard/myCard.html",
            f"{LWC}/myCard/myCard.js",
        ]

    def test_missing_component_is_empty(self, resolver):
        assert resolver.resolve_paths_for_identity("ApexClass", "Nope").is_empty

    def test_unknown_type_is_empty(self, resolver, project, write):
        write(project, f"{CLASSES}/Foo.cls", "")
        assert resolver.resolve_paths_for_identity("Nope", "Foo").is_empty


class TestCustomRules:
    def test_custom_rule_is_used(self, project, write):
        rule = MetadataTypeRule(
            type="ApexClass", directory="src", suffix=".apex"
        )
        resolver = PatternMetadataResolver(project, ["force-app"], [rule])
        write(project, "force-app/src/Bar.apex", "")
        assert resolver.resolve_identity_for_path(
            "force-app/src/Bar.apex"
        ) == ComponentIdentity(type="ApexClass", name="Bar")
        assert resolver.resolve_paths_for_identity("ApexClass", "Bar").all_paths() == [
            "force-app/src/Bar.apex"
        ]

    def test_satisfies_protocol(self, resolver):
        assert isinstance(resolver, MetadataResolver)


def test_component_paths_drop_duplicates():
    paths = ComponentPaths(descriptor_path="a", content_paths=["a", "b"])
    assert paths.all_paths() == ["a", "b"]
