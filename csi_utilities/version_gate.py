import logging
import re
from dataclasses import dataclass

from csi_utilities.constants import FEATURE_PVC_CLONE, FEATURE_RESIZE, FEATURE_SNAPSHOT

LOGGER = logging.getLogger(__name__)

VERSION_COMPONENT_PATTERN = re.compile(r"^\s*v?(\d+)")


@dataclass(frozen=True)
class VersionInfo:
    major: int
    minor: int

    def __str__(self):
        return f"{self.major}.{self.minor}"

    @classmethod
    def from_components(cls, major: str | int, minor: str | int) -> "VersionInfo":
        """
        Build a VersionInfo from the raw major/minor fields reported by the API server.

        Managed platforms report values such as minor="27+", so only the leading digits are used.

        Raises:
            ValueError: if a component carries no leading integer.
        """
        return cls(major=_parse_component(value=major), minor=_parse_component(value=minor))

    @classmethod
    def parse(cls, version: str) -> "VersionInfo":
        """Parse "1.17", "v1.27.3" or "1.27+" style strings."""
        major, _, remainder = version.strip().partition(".")
        if not remainder:
            raise ValueError(f"Version {version!r} has no minor component")
        return cls.from_components(major=major, minor=remainder.split(".")[0])


def _parse_component(value: str | int) -> int:
    if isinstance(value, int):
        return value
    match = VERSION_COMPONENT_PATTERN.match(value)
    if not match:
        raise ValueError(f"Version component {value!r} is not numeric")
    return int(match.group(1))


FEATURE_GATES: dict[str, VersionInfo] = {
    FEATURE_RESIZE: VersionInfo(major=1, minor=15),
    FEATURE_PVC_CLONE: VersionInfo(major=1, minor=16),
    FEATURE_SNAPSHOT: VersionInfo(major=1, minor=17),
}

CLONE_FROM_SNAPSHOT_FEATURES = (FEATURE_SNAPSHOT, FEATURE_PVC_CLONE)
CLONE_FROM_CLAIM_FEATURES = (FEATURE_PVC_CLONE,)
RESIZE_FEATURES = (FEATURE_RESIZE,)


def is_enabled(feature: str, version: VersionInfo, gates: dict[str, VersionInfo] | None = None) -> bool:
    gates = FEATURE_GATES if gates is None else gates
    gate = gates[feature]
    return version.major > gate.major or (version.major == gate.major and version.minor >= gate.minor)


def minimum_version(features: tuple[str, ...], gates: dict[str, VersionInfo] | None = None) -> VersionInfo:
    """Return the highest minimum among `features`, i.e. the version that enables all of them."""
    gates = FEATURE_GATES if gates is None else gates
    required = [gates[feature] for feature in features]
    return max(required, key=lambda gate: (gate.major, gate.minor))


def are_enabled(features: tuple[str, ...], version: VersionInfo, gates: dict[str, VersionInfo] | None = None) -> bool:
    enabled = all(is_enabled(feature=feature, version=version, gates=gates) for feature in features)
    if not enabled:
        LOGGER.info(
            f"Features {list(features)} require platform {minimum_version(features=features, gates=gates)}, "
            f"cluster reports {version}"
        )
    return enabled
