"""
Policy Mapper for the Vault Provisioner.

This module reads the collection policy configuration file and resolves
which vault collections a member should receive based on their role.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..models import AccessGrant

logger = logging.getLogger(__name__)

DEFAULT_POLICY_FILE = Path(__file__).parent / "collection_policy.yaml"
DEFAULT_ROLE = "default"


class PolicyMapper:
    """
    Maps directory roles to vault collection grants.

    Reads configuration from collection_policy.yaml. Resolution is a pure
    function of that configuration and the role string: exact role, then
    lower-cased role, then the ``default`` policy. The baseline collection
    is appended to every resolution.
    """

    def __init__(self, policy_file: Optional[Union[str, Path]] = None,
                 baseline: Optional[AccessGrant] = None):
        """
        Initialize the policy mapper.

        Args:
            policy_file: YAML file with baseline, collections and roles.
                         Defaults to the file shipped with the engine.
            baseline: Overrides the baseline collection from the file
        """
        self.policy_file = Path(policy_file) if policy_file else DEFAULT_POLICY_FILE
        self._baseline_override = baseline
        self.baseline: Optional[AccessGrant] = None
        self.collections: Dict[str, Dict[str, Any]] = {}
        self.roles: Dict[str, List[AccessGrant]] = {}
        self._roles_folded: Dict[str, List[AccessGrant]] = {}

        self._load_configurations()

    def _load_configurations(self):
        """Load the collection policy from YAML."""
        try:
            with open(self.policy_file, encoding='utf-8') as f:
                policy = yaml.safe_load(f) or {}
            logger.info(f"Loaded collection policy from {self.policy_file}")
        except Exception as e:
            logger.error(f"Failed to load collection policy: {e}")
            raise

        self.collections = policy.get("collections", {}) or {}

        baseline_config = policy.get("baseline_collection") or {}
        if self._baseline_override is not None:
            self.baseline = self._baseline_override
        elif baseline_config.get("id"):
            self.baseline = self._build_grant(baseline_config)
        else:
            raise ValueError(f"No baseline collection configured in {self.policy_file}")

        self.roles = {}
        for role, role_config in (policy.get("roles") or {}).items():
            entries = (role_config or {}).get("collections", []) or []
            self.roles[str(role)] = [self._resolve_entry(entry, role) for entry in entries]

        self._roles_folded = {role.lower(): grants for role, grants in self.roles.items()}

        if DEFAULT_ROLE not in self._roles_folded:
            logger.warning(f"No '{DEFAULT_ROLE}' role in {self.policy_file}; unknown roles get the baseline only")

    def _resolve_entry(self, entry: Union[str, Dict[str, Any]], role: str) -> AccessGrant:
        """Turn a role entry (collection key or mapping) into an AccessGrant."""
        if isinstance(entry, str):
            entry = {"collection": entry}

        key = entry.get("collection")
        collection = dict(self.collections.get(key, {})) if key else {}
        if key and not collection:
            raise ValueError(f"Role '{role}' references unknown collection '{key}'")

        collection.update({k: v for k, v in entry.items() if k != "collection"})
        return self._build_grant(collection)

    @staticmethod
    def _build_grant(config: Dict[str, Any]) -> AccessGrant:
        return AccessGrant(
            collection_id=str(config["id"]),
            name=config.get("name", ""),
            read_only=bool(config.get("read_only", False)),
            hide_passwords=bool(config.get("hide_passwords", False)),
            manage=bool(config.get("manage", False)),
        )

    def _lookup_role(self, role: str) -> Optional[List[AccessGrant]]:
        if role in self.roles:
            return self.roles[role]
        return self._roles_folded.get(role.lower())

    def resolve_grants(self, role: Optional[str]) -> List[AccessGrant]:
        """
        Resolve the collection grants for a role.

        Args:
            role: Role or team name from the directory. A comma-separated
                  value (multi-select team) resolves each part.

        Returns:
            Deduplicated grants, role collections first, baseline last
        """
        role = (role or "").strip()
        logger.debug(f"Resolving collection grants for role='{role}'")

        grants = self._lookup_role(role) if role else None

        if grants is None and "," in role:
            parts = [self._lookup_role(part.strip()) for part in role.split(",") if part.strip()]
            matched = [part for part in parts if part is not None]
            if matched:
                grants = [grant for part in matched for grant in part]

        if grants is None:
            logger.info(f"No collection policy for role '{role}', using default policy")
            grants = self._roles_folded.get(DEFAULT_ROLE, [])

        resolved = list(grants)
        if all(g.collection_id != self.baseline.collection_id for g in resolved):
            resolved.append(self.baseline)

        return self._deduplicate(resolved)

    def resolve_collection_names(self, role: Optional[str]) -> List[str]:
        """Human-readable collection names for a role, for user-facing messages."""
        return [grant.name or grant.collection_id for grant in self.resolve_grants(role)]

    @staticmethod
    def _deduplicate(grants: List[AccessGrant]) -> List[AccessGrant]:
        seen = set()
        unique = []
        for grant in grants:
            if grant.collection_id in seen:
                continue
            seen.add(grant.collection_id)
            unique.append(grant)
        return unique

    def get_all_roles(self) -> List[str]:
        """Get list of all configured roles."""
        return sorted(role for role in self.roles if role.lower() != DEFAULT_ROLE)

    def reload_config(self):
        """Reload the policy file (useful for dynamic updates)."""
        logger.info("Reloading collection policy")
        self._load_configurations()
