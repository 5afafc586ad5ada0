"""Metadata-schema resolver: the contract the identity bridge depends on.

A resolver answers two questions:

- ``resolve_paths_for_identity(type, name)`` -- which project files make up
  this component?
- ``resolve_identity_for_path(path)`` -- which component (if any) does this
  file belong to?

``PatternMetadataResolver`` is a config-driven implementation.  Each
``MetadataTypeRule`` describes where a metadata type lives in a package
directory:

1. **Single-file types** -- ``<pkg>/**/<directory>/<name><suffix>`` with a
   ``<name><suffix><descriptor_suffix>`` descriptor beside it.  An empty
   ``suffix`` means the descriptor is the only file.
2. **Bundle types** -- ``<pkg>/**/<directory>/<name>/...``; every file in
   the folder belongs to the component and the descriptor is the file
   ending in ``descriptor_suffix``.

All returned paths are project-relative POSIX strings.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from .errors import UnresolvableComponentError

logger = logging.getLogger(__name__)


class ComponentIdentity(BaseModel):
    """Logical identity of a metadata component."""

    type: str
    name: str

    model_config = {"frozen": True}


class ComponentPaths(BaseModel):
    """Files belonging to one component."""

    descriptor_path: str | None = None
    content_paths: list[str] = []

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.descriptor_path and not self.content_paths

    def all_paths(self) -> list[str]:
        """Descriptor first, then content; empties and repeats removed."""
        ordered = [self.descriptor_path, *self.content_paths]
        return list(dict.fromkeys(p for p in ordered if p))


@runtime_checkable
class MetadataResolver(Protocol):
    """Structural knowledge about how components map onto files.

    ``resolve_identity_for_path`` returns ``None`` for files that are not
    metadata at all and raises ``UnresolvableComponentError`` for files
    that should be metadata but cannot be classified.
    """

    def resolve_paths_for_identity(
        self, metadata_type: str, name: str
    ) -> ComponentPaths: ...

    def resolve_identity_for_path(
        self, path: str
    ) -> ComponentIdentity | None: ...


class MetadataTypeRule(BaseModel):
    """Where one metadata type lives on disk.

    Attributes:
        type: Metadata type name (e.g. ``ApexClass``).
        directory: Folder name holding components of this type.
        suffix: Content file suffix (e.g. ``.cls``); empty when the
            descriptor is the only file.
        descriptor_suffix: Suffix appended to form the descriptor name.
        bundle: True when each component is a folder of files.
    """

    type: str = Field(description="Metadata type name")
    directory: str = Field(description="Folder holding this type")
    suffix: str = Field(default="", description="Content file suffix")
    descriptor_suffix: str = Field(
        default="-meta.xml", description="Descriptor file suffix"
    )
    bundle: bool = Field(
        default=False, description="Components are folders of files"
    )

    model_config = {"frozen": True}


DEFAULT_METADATA_RULES: tuple[MetadataTypeRule, ...] = (
    MetadataTypeRule(type="ApexClass", directory="classes", suffix=".cls"),
    MetadataTypeRule(
        type="ApexTrigger", directory="triggers", suffix=".trigger"
    ),
    MetadataTypeRule(type="ApexPage", directory="pages", suffix=".page"),
    MetadataTypeRule(
        type="ApexComponent", directory="components", suffix=".component"
    ),
    MetadataTypeRule(
        type="StaticResource",
        directory="staticresources",
        suffix=".resource",
    ),
    MetadataTypeRule(
        type="Layout",
        directory="layouts",
        descriptor_suffix=".layout-meta.xml",
    ),
    MetadataTypeRule(
        type="Flow", directory="flows", descriptor_suffix=".flow-meta.xml"
    ),
    MetadataTypeRule(
        type="PermissionSet",
        directory="permissionsets",
        descriptor_suffix=".permissionset-meta.xml",
    ),
    MetadataTypeRule(
        type="Profile",
        directory="profiles",
        descriptor_suffix=".profile-meta.xml",
    ),
    MetadataTypeRule(
        type="CustomLabels",
        directory="labels",
        descriptor_suffix=".labels-meta.xml",
    ),
    MetadataTypeRule(
        type="CustomTab", directory="tabs", descriptor_suffix=".tab-meta.xml"
    ),
    MetadataTypeRule(
        type="CustomObject",
        directory="objects",
        descriptor_suffix=".object-meta.xml",
        bundle=True,
    ),
    MetadataTypeRule(
        type="LightningComponentBundle",
        directory="lwc",
        descriptor_suffix=".js-meta.xml",
        bundle=True,
    ),
    MetadataTypeRule(
        type="AuraDefinitionBundle",
        directory="aura",
        descriptor_suffix="-meta.xml",
        bundle=True,
    ),
)


class PatternMetadataResolver:
    """Resolve components from directory and suffix conventions.

    Args:
        project_root: Absolute project directory.
        package_directories: Package folders relative to *project_root*.
        rules: Metadata type rules; first match wins.
    """

    def __init__(
        self,
        project_root: Path,
        package_directories: Sequence[str],
        rules: Sequence[MetadataTypeRule] = DEFAULT_METADATA_RULES,
    ) -> None:
        self._project_root = project_root
        self._package_directories = [
            PurePosixPath(Path(d).as_posix()) for d in package_directories
        ]
        self._rules = list(rules)

    # ------------------------------------------------------------------
    # Path -> identity
    # ------------------------------------------------------------------

    def resolve_identity_for_path(
        self, path: str
    ) -> ComponentIdentity | None:
        """Classify *path*, or return ``None`` for non-metadata files.

        Raises:
            UnresolvableComponentError: If *path* sits directly in a
                metadata type folder but matches none of its naming rules.
        """
        rel = self._relative(path)
        if rel is None or not self._in_package(rel):
            return None

        parts = rel.parts
        for rule in self._rules:
            name = (
                self._bundle_name(rule, parts)
                if rule.bundle
                else self._file_name(rule, parts)
            )
            if name:
                return ComponentIdentity(type=rule.type, name=name)

        folder_rule = self._rule_for_folder(parts)
        if folder_rule is not None:
            raise UnresolvableComponentError(
                f"{rel} is in a {folder_rule.type} folder but is not a "
                f"{folder_rule.type} file"
            )
        return None

    # ------------------------------------------------------------------
    # Identity -> paths
    # ------------------------------------------------------------------

    def resolve_paths_for_identity(
        self, metadata_type: str, name: str
    ) -> ComponentPaths:
        """Find the files of component *name* of *metadata_type*.

        Returns an empty ``ComponentPaths`` when nothing is found.

        Raises:
            OSError: If a package directory cannot be walked.
        """
        for rule in self._rules:
            if rule.type != metadata_type:
                continue
            for package_dir in self._package_directories:
                root = self._project_root / package_dir
                if not root.is_dir():
                    continue
                for type_dir in sorted(root.rglob(rule.directory)):
                    if not type_dir.is_dir():
                        continue
                    found = (
                        self._bundle_paths(rule, type_dir / name)
                        if rule.bundle
                        else self._file_paths(rule, type_dir, name)
                    )
                    if not found.is_empty:
                        return found
        return ComponentPaths()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _relative(self, path: str) -> PurePosixPath | None:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.relative_to(self._project_root)
            except ValueError:
                return None
        return PurePosixPath(p.as_posix())

    def _in_package(self, rel: PurePosixPath) -> bool:
        return any(
            rel.is_relative_to(pkg) for pkg in self._package_directories
        )

    def _rule_for_folder(
        self, parts: tuple[str, ...]
    ) -> MetadataTypeRule | None:
        if len(parts) < 2:
            return None
        return next(
            (r for r in self._rules if r.directory == parts[-2]), None
        )

    def _to_project_path(self, path: Path) -> str:
        return path.relative_to(self._project_root).as_posix()

    @staticmethod
    def _bundle_name(
        rule: MetadataTypeRule, parts: tuple[str, ...]
    ) -> str | None:
        # <directory>/<name>/<file...>, innermost match wins
        for i in range(len(parts) - 3, -1, -1):
            if parts[i] == rule.directory:
                return parts[i + 1]
        return None

    @staticmethod
    def _file_name(
        rule: MetadataTypeRule, parts: tuple[str, ...]
    ) -> str | None:
        if len(parts) < 2 or parts[-2] != rule.directory:
            return None
        filename = parts[-1]
        descriptor_tail = rule.suffix + rule.descriptor_suffix
        if filename.endswith(descriptor_tail):
            return filename[: -len(descriptor_tail)] or None
        if rule.suffix and filename.endswith(rule.suffix):
            return filename[: -len(rule.suffix)] or None
        return None

    def _file_paths(
        self, rule: MetadataTypeRule, type_dir: Path, name: str
    ) -> ComponentPaths:
        descriptor = type_dir / f"{name}{rule.suffix}{rule.descriptor_suffix}"
        content = type_dir / f"{name}{rule.suffix}" if rule.suffix else None
        return ComponentPaths(
            descriptor_path=(
                self._to_project_path(descriptor)
                if descriptor.is_file()
                else None
            ),
            content_paths=(
                [self._to_project_path(content)]
                if content is not None and content.is_file()
                else []
            ),
        )

    def _bundle_paths(
        self, rule: MetadataTypeRule, folder: Path
    ) -> ComponentPaths:
        if not folder.is_dir():
            return ComponentPaths()
        descriptor: str | None = None
        content: list[str] = []
        for path in sorted(folder.rglob("*")):
            if not path.is_file():
                continue
            rel = self._to_project_path(path)
            if descriptor is None and path.name.endswith(
                rule.descriptor_suffix
            ):
                descriptor = rel
            else:
                content.append(rel)
        return ComponentPaths(descriptor_path=descriptor, content_paths=content)
