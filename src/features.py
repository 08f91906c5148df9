"""
Feature and cookbook catalog for the Cluster Upgrade Manager.

Features are a closed set. Every cookbook, role and repository the manager
knows about is declared here and validated once at startup.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple


class Feature(Enum):
    """Deployable feature families."""

    OS = "os"
    OPENSTACK = "openstack"
    CEPH = "ceph"
    HA = "ha"


# Features that are optional add-ons to the base deployment
ADDON_FEATURES: Tuple[Feature, ...] = (Feature.CEPH, Feature.HA)

# Feature whose cookbooks are eligible for restart-suppression policy
PRIMARY_FEATURE = Feature.OPENSTACK


@dataclass(frozen=True)
class RoleServices:
    """Services a node runs because it carries a given role."""

    cookbook: str
    services: Tuple[str, ...]


ROLE_SERVICES: Dict[str, RoleServices] = {
    "database-server": RoleServices("database", ("postgresql",)),
    "rabbitmq-server": RoleServices("rabbitmq", ("rabbitmq-server",)),
    "keystone-server": RoleServices("keystone", ("openstack-keystone",)),
    "glance-server": RoleServices(
        "glance", ("openstack-glance-api", "openstack-glance-registry")
    ),
    "nova-controller": RoleServices(
        "nova",
        (
            "openstack-nova-api",
            "openstack-nova-scheduler",
            "openstack-nova-conductor",
        ),
    ),
    "nova-compute-kvm": RoleServices("nova", ("openstack-nova-compute",)),
    "neutron-server": RoleServices("neutron", ("openstack-neutron",)),
    "neutron-network": RoleServices(
        "neutron",
        (
            "openstack-neutron-openvswitch-agent",
            "openstack-neutron-dhcp-agent",
            "openstack-neutron-l3-agent",
        ),
    ),
    "cinder-controller": RoleServices(
        "cinder", ("openstack-cinder-api", "openstack-cinder-scheduler")
    ),
    "cinder-volume": RoleServices("cinder", ("openstack-cinder-volume",)),
    "heat-server": RoleServices(
        "heat", ("openstack-heat-api", "openstack-heat-engine")
    ),
    "ceph-mon": RoleServices("ceph", ("ceph-mon.target",)),
    "ceph-osd": RoleServices("ceph", ("ceph-osd.target",)),
    "pacemaker-cluster-member": RoleServices("pacemaker", ("pacemaker",)),
}

COOKBOOK_FEATURES: Dict[str, Feature] = {
    "database": Feature.OPENSTACK,
    "rabbitmq": Feature.OPENSTACK,
    "keystone": Feature.OPENSTACK,
    "glance": Feature.OPENSTACK,
    "nova": Feature.OPENSTACK,
    "neutron": Feature.OPENSTACK,
    "cinder": Feature.OPENSTACK,
    "heat": Feature.OPENSTACK,
    "ceph": Feature.CEPH,
    "pacemaker": Feature.HA,
}

REQUIRED_REPOSITORIES: Dict[str, Dict[Feature, Tuple[str, ...]]] = {
    "suse-12.2": {
        Feature.OS: ("SLES12-SP2-Pool", "SLES12-SP2-Updates"),
        Feature.OPENSTACK: (
            "SUSE-OpenStack-Cloud-7-Pool",
            "SUSE-OpenStack-Cloud-7-Updates",
        ),
        Feature.CEPH: (
            "SUSE-Enterprise-Storage-4-Pool",
            "SUSE-Enterprise-Storage-4-Updates",
        ),
        Feature.HA: ("SLE12-SP2-HA-Pool", "SLE12-SP2-HA-Updates"),
    },
    "suse-12.3": {
        Feature.OS: ("SLES12-SP3-Pool", "SLES12-SP3-Updates"),
        Feature.OPENSTACK: (
            "SUSE-OpenStack-Cloud-8-Pool",
            "SUSE-OpenStack-Cloud-8-Updates",
        ),
        Feature.CEPH: (
            "SUSE-Enterprise-Storage-5-Pool",
            "SUSE-Enterprise-Storage-5-Updates",
        ),
        Feature.HA: ("SLE12-SP3-HA-Pool", "SLE12-SP3-HA-Updates"),
    },
}


def managed_cookbooks() -> FrozenSet[str]:
    """Return the cookbooks eligible for restart-suppression policy."""
    return frozenset(
        cookbook
        for cookbook, feature in COOKBOOK_FEATURES.items()
        if feature == PRIMARY_FEATURE
    )


def services_for_roles(roles: Iterable[str]) -> Dict[str, List[str]]:
    """
    Map a node's roles to the services it runs, grouped by cookbook.

    Unknown roles are ignored; they carry no upgrade-affected services.
    """
    grouped: Dict[str, List[str]] = {}
    for role in roles:
        entry = ROLE_SERVICES.get(role)
        if entry is None:
            continue
        services = grouped.setdefault(entry.cookbook, [])
        for service in entry.services:
            if service not in services:
                services.append(service)
    return grouped


def features_for_roles(roles: Iterable[str]) -> Set[Feature]:
    """Return the features a node participates in, always including OS."""
    found = {Feature.OS}
    for cookbook in services_for_roles(roles):
        found.add(COOKBOOK_FEATURES[cookbook])
    return found


def deployed_addons(role_sets: Iterable[Iterable[str]]) -> List[str]:
    """Return the addon feature names deployed on any node, in catalog order."""
    deployed: Set[Feature] = set()
    for roles in role_sets:
        deployed |= features_for_roles(roles)
    return [f.value for f in ADDON_FEATURES if f in deployed]


def required_repositories(feature: Feature, platform: str) -> Tuple[str, ...]:
    """Return the repository names a feature needs on a platform."""
    try:
        return REQUIRED_REPOSITORIES[platform][feature]
    except KeyError:
        raise ValueError(
            f"No repositories defined for feature '{feature.value}' on {platform}"
        )


def validate_catalog(platform: str) -> None:
    """
    Validate the catalog tables for a target platform.

    Raises:
        ValueError: If the platform is unknown or the tables are inconsistent
    """
    if platform not in REQUIRED_REPOSITORIES:
        supported = ", ".join(sorted(REQUIRED_REPOSITORIES))
        raise ValueError(
            f"Unsupported target platform '{platform}' (supported: {supported})"
        )

    missing = [f.value for f in Feature if f not in REQUIRED_REPOSITORIES[platform]]
    if missing:
        raise ValueError(
            f"Platform {platform} has no repositories for: {', '.join(missing)}"
        )

    for role, entry in ROLE_SERVICES.items():
        if entry.cookbook not in COOKBOOK_FEATURES:
            raise ValueError(
                f"Role '{role}' uses cookbook '{entry.cookbook}' with no feature"
            )
