import re
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

# Nix attribute path: identifiers separated by dots, e.g. python3Packages.pip
DEPENDENCY_NAME_PATTERN = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_'\-]*(\.[A-Za-z_][A-Za-z0-9_'\-]*)*$"
)

PIN_KIND_PATH = "path"
PIN_KIND_NAMED = "named"


def pin_kind(reference: str) -> str:
    """Classify a pin reference as a local file path or a named pin."""
    if reference.endswith(".nix") or "/" in reference:
        return PIN_KIND_PATH
    return PIN_KIND_NAMED


@dataclass(frozen=True)
class DependencySet:
    """Ordered, duplicate-free and immutable set of package names."""

    names: Tuple[str, ...] = ()

    def __post_init__(self):
        # First occurrence wins, whichever constructor was used
        object.__setattr__(self, "names", tuple(dict.fromkeys(self.names)))

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "DependencySet":
        """Build a set keeping the first occurrence of every name."""
        return cls(tuple(names))

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def as_set(self) -> FrozenSet[str]:
        return frozenset(self.names)

    def union(self, other: "DependencySet") -> "DependencySet":
        return DependencySet.from_names(self.names + other.names)

    def difference(self, other: "DependencySet") -> "DependencySet":
        return DependencySet(tuple(n for n in self.names if n not in other))

    def to_list(self) -> List[str]:
        return list(self.names)


@dataclass(frozen=True)
class ToolchainPin:
    """A reference to an externally pinned toolchain descriptor."""

    reference: str
    kind: str = PIN_KIND_PATH
    location: Optional[str] = None
    url: Optional[str] = None
    rev: Optional[str] = None
    sha256: Optional[str] = None

    @classmethod
    def from_reference(cls, reference: str) -> "ToolchainPin":
        return cls(reference=reference, kind=pin_kind(reference))

    @property
    def is_resolved(self) -> bool:
        return self.location is not None

    @property
    def binding_name(self) -> str:
        """Name the toolchain is bound to inside a shell.nix let block."""
        stem = self.reference.rstrip("/").rsplit("/", 1)[-1]
        if stem.endswith(".nix"):
            stem = stem[: -len(".nix")]
        stem = re.sub(r"[^A-Za-z0-9_'\-]", "_", stem)
        if not stem or not (stem[0].isalpha() or stem[0] == "_"):
            stem = f"toolchain_{stem}"
        return stem

    def resolved(self, location: str, **metadata: Optional[str]) -> "ToolchainPin":
        return replace(self, location=location, **metadata)


@dataclass(frozen=True)
class EnvironmentDescriptor:
    """A loaded development shell descriptor."""

    name: str
    dependencies: DependencySet
    toolchain_pin: ToolchainPin
    source: str
    source_format: str
    duplicates: Tuple[str, ...] = field(default=(), compare=False)
