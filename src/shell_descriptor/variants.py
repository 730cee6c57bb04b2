"""
Comparison of near-duplicate descriptors.

Two shells that differ by a tool or two may be deliberate variants or may
have drifted apart. The diff reports what differs and how the two relate
without treating either side as authoritative.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from .dependency import PIN_KIND_PATH, EnvironmentDescriptor, ToolchainPin


class Relationship(Enum):
    """How the dependency sets of two descriptors relate."""

    IDENTICAL = "identical"
    SUPERSET = "superset"
    SUBSET = "subset"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class DescriptorDiff:
    """Differences between a left and a right descriptor."""

    left: EnvironmentDescriptor
    right: EnvironmentDescriptor
    only_in_left: Tuple[str, ...]
    only_in_right: Tuple[str, ...]
    common: Tuple[str, ...]
    toolchain_changed: bool

    @property
    def relationship(self) -> Relationship:
        """
        Left relative to right. A changed toolchain pin always counts as
        divergence, since the same names then build against different
        compilers.
        """
        if self.toolchain_changed or (self.only_in_left and self.only_in_right):
            return Relationship.DIVERGED
        if self.only_in_left:
            return Relationship.SUPERSET
        if self.only_in_right:
            return Relationship.SUBSET
        return Relationship.IDENTICAL

    @property
    def is_identical(self) -> bool:
        return self.relationship == Relationship.IDENTICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left": {"name": self.left.name, "source": self.left.source},
            "right": {"name": self.right.name, "source": self.right.source},
            "relationship": self.relationship.value,
            "only_in_left": list(self.only_in_left),
            "only_in_right": list(self.only_in_right),
            "common": list(self.common),
            "toolchain_changed": self.toolchain_changed,
            "left_toolchain_pin": self.left.toolchain_pin.reference,
            "right_toolchain_pin": self.right.toolchain_pin.reference,
        }


def _pins_differ(left: ToolchainPin, right: ToolchainPin) -> bool:
    """
    Path pins are the same toolchain when they resolve to the same file,
    however the reference is spelled. Named pins compare by reference, and
    by revision when both sides know it.
    """
    if (
        left.kind == PIN_KIND_PATH
        and right.kind == PIN_KIND_PATH
        and left.is_resolved
        and right.is_resolved
    ):
        return left.location != right.location
    return left.reference != right.reference or (
        left.rev is not None and right.rev is not None and left.rev != right.rev
    )


def compare_descriptors(
    left: EnvironmentDescriptor, right: EnvironmentDescriptor
) -> DescriptorDiff:
    """Compare two descriptors; left is described relative to right."""
    return DescriptorDiff(
        left=left,
        right=right,
        only_in_left=left.dependencies.difference(right.dependencies).names,
        only_in_right=right.dependencies.difference(left.dependencies).names,
        common=tuple(n for n in left.dependencies if n in right.dependencies),
        toolchain_changed=_pins_differ(left.toolchain_pin, right.toolchain_pin),
    )
