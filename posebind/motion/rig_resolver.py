"""
Rig name resolution.

Target rigs follow no common naming convention, so each abstract bone role
carries a list of candidate names. For every candidate, in order, the
resolver tries:

1. exact match
2. case-insensitive match
3. underscore-stripped candidate, matched exactly
4. camel-case candidate converted to snake case, matched against
   lower-cased rig names

The first hit wins. When nothing matches, the search can be repeated
against rig names with their namespace prefix removed
("mixamorig:LeftArm" -> "LeftArm"). A role that still does not match is
unresolved; that is not an error.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from posebind.core.config import Config


class MatchStrategy(Enum):
    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"
    UNDERSCORE_STRIPPED = "underscore_stripped"
    SNAKE_CASE = "snake_case"


@dataclass(frozen=True)
class Resolution:
    """How a role was bound to a rig name."""
    role: str
    name: str
    candidate: str
    strategy: MatchStrategy
    namespace_stripped: bool = False


@dataclass
class ResolverSettings:
    strip_namespaces: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "ResolverSettings":
        return cls(strip_namespaces=bool(config.resolver.get("strip_namespaces", True)))


_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    """'LeftForeArm' -> 'left_fore_arm'."""
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


def strip_namespace(name: str) -> str:
    """Drop an exporter namespace prefix such as 'mixamorig:' or 'Armature|'."""
    for separator in (":", "|"):
        if separator in name:
            name = name.rsplit(separator, 1)[1]
    return name


def name_variants(candidate: str) -> List[Tuple[MatchStrategy, str]]:
    """Lookup keys for a candidate, in priority order."""
    return [
        (MatchStrategy.EXACT, candidate),
        (MatchStrategy.CASE_INSENSITIVE, candidate.lower()),
        (MatchStrategy.UNDERSCORE_STRIPPED, candidate.replace("_", "")),
        (MatchStrategy.SNAKE_CASE, camel_to_snake(candidate)),
    ]


class _NameIndex:
    """Rig names indexed once per lookup strategy; first occurrence wins."""

    def __init__(self, names: Iterable[str], transform=None):
        self.exact: Dict[str, str] = {}
        self.lower: Dict[str, str] = {}
        for name in names:
            key = transform(name) if transform else name
            self.exact.setdefault(key, name)
            self.lower.setdefault(key.lower(), name)

    def lookup(self, strategy: MatchStrategy, key: str) -> Optional[str]:
        if strategy in (MatchStrategy.EXACT, MatchStrategy.UNDERSCORE_STRIPPED):
            return self.exact.get(key)
        return self.lower.get(key)


def _search(
    role: str,
    candidates: Sequence[str],
    index: _NameIndex,
    namespace_stripped: bool,
) -> Optional[Resolution]:
    for candidate in candidates:
        for strategy, key in name_variants(candidate):
            name = index.lookup(strategy, key)
            if name is not None:
                return Resolution(role, name, candidate, strategy, namespace_stripped)
    return None


def resolve_bone_name(
    role: str,
    alternates: Sequence[str],
    available_names: Iterable[str],
    strip_namespaces: bool = True,
) -> Optional[Resolution]:
    """
    Find the rig name for a role.

    Args:
        role: Canonical role name (tried first)
        alternates: Alternate names, tried in order after the role
        available_names: Bone or part names present in the loaded rig
        strip_namespaces: Retry against namespace-free rig names

    Returns:
        Resolution, or None when the role is unresolved
    """
    names = list(available_names)
    candidates = [role, *alternates]

    resolution = _search(role, candidates, _NameIndex(names), False)
    if resolution is None and strip_namespaces:
        resolution = _search(role, candidates, _NameIndex(names, strip_namespace), True)
    return resolution


def resolve_mappings(
    mappings: Iterable,
    available_names: Iterable[str],
    strip_namespaces: bool = True,
) -> Dict[str, Optional[Resolution]]:
    """Resolve every mapping (anything with .role and .alternates) against a rig."""
    names = list(available_names)
    return {
        mapping.role: resolve_bone_name(mapping.role, mapping.alternates, names, strip_namespaces)
        for mapping in mappings
    }
