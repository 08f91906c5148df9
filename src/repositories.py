"""
Repository availability checks for upgrade targets.

A repository is usable when it is both provided (its metadata exists on the
admin server) and enabled (activated in the repository configuration item).
Nothing is cached: repositories are added and activated while an upgrade is
being prepared.
"""

import logging
from pathlib import Path
from typing import Dict, List, Tuple

from features import Feature, required_repositories
from stores import PolicyStore

logger = logging.getLogger(__name__)

REPOSITORY_CONFIG = ("upgrade-config", "repositories")


class RepositoryChecker:
    """Checks that the repositories a feature needs are available."""

    def __init__(self, repo_root: str, store: PolicyStore):
        """
        Args:
            repo_root: Directory holding <platform>/<arch>/repos/<name> trees
            store: Policy Store holding the repository activation document
        """
        self.repo_root = Path(repo_root)
        self.store = store

    def _repo_path(self, platform: str, arch: str, name: str) -> Path:
        return self.repo_root / platform / arch / "repos" / name

    def _provided(self, platform: str, arch: str, name: str) -> bool:
        return (self._repo_path(platform, arch, name) / "repodata" / "repomd.xml").is_file()

    def _enabled(self, activation: Dict, platform: str, arch: str, name: str) -> bool:
        return bool(activation.get(platform, {}).get(arch, {}).get(name, False))

    def _activation(self) -> Dict:
        namespace, key = REPOSITORY_CONFIG
        return self.store.read(namespace, key) or {}

    def repositories(self, feature: Feature, platform: str, arch: str) -> List[Dict]:
        """Enumerate the repositories a feature needs with both predicates."""
        activation = self._activation()
        return [
            {
                "name": name,
                "path": str(self._repo_path(platform, arch, name)),
                "provided": self._provided(platform, arch, name),
                "enabled": self._enabled(activation, platform, arch, name),
            }
            for name in required_repositories(feature, platform)
        ]

    def check(
        self, feature: Feature, platform: str, arch: str
    ) -> Tuple[bool, Dict[str, Dict[str, List[str]]]]:
        """
        Check whether every repository of a feature is provided and enabled.

        Returns:
            Tuple of (available, details) where details maps each problem
            repository to {"missing": [arch]} or {"inactive": [arch]}
        """
        details: Dict[str, Dict[str, List[str]]] = {}
        for repo in self.repositories(feature, platform, arch):
            if not repo["provided"]:
                details[repo["name"]] = {"missing": [arch]}
            elif not repo["enabled"]:
                details[repo["name"]] = {"inactive": [arch]}

        available = not details
        logger.debug(
            f"Repository check {feature.value}/{platform}/{arch}: available={available}"
        )
        return available, details
