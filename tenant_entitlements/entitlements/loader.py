"""
Tier Policy Loader - Load the tier policy table from config/tier_policy.yml.

Provides:
- TierPolicyLoader: Reads and validates the policy file
- load_tier_policy(): One-shot load into an immutable TierPolicyTable
- get_tier_policy(): Process-wide table, loaded once on first use

CRITICAL: This file is the source of truth for which tier a feature needs.
Do NOT hardcode tier requirements elsewhere.
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

from tenant_entitlements.entitlements.errors import PolicyConfigError
from tenant_entitlements.entitlements.models import Feature, Tier
from tenant_entitlements.entitlements.policy import TierPolicyTable

logger = logging.getLogger(__name__)

POLICY_PATH_ENV = "TIER_POLICY_PATH"
DEFAULT_POLICY_FILE = "tier_policy.yml"


class TierPolicyLoader:
    """
    Reads config/tier_policy.yml and builds a TierPolicyTable.

    Validation is strict: an unknown tier, an unregistered feature, or a
    registered feature missing from the file aborts the load. Policy errors
    surface at process start, never mid-request.
    """

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path or os.getenv(POLICY_PATH_ENV)

    def _resolve_config_path(self) -> Path:
        """Resolve the config file path."""
        if self._config_path:
            path = Path(self._config_path)
            if not path.exists():
                raise PolicyConfigError(f"Tier policy file not found: {path}")
            return path

        possible_paths = [
            Path(__file__).parent.parent / "config" / DEFAULT_POLICY_FILE,
            Path(os.getcwd()) / "config" / DEFAULT_POLICY_FILE,
        ]

        for path in possible_paths:
            if path.exists():
                return path

        raise PolicyConfigError(
            f"{DEFAULT_POLICY_FILE} not found in any of: {[str(p) for p in possible_paths]}"
        )

    def load(self) -> TierPolicyTable:
        path = self._resolve_config_path()
        logger.info("Loading tier policy from %s", path)

        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PolicyConfigError(f"Tier policy file {path} is not valid YAML: {e}") from e

        table = self.parse(raw)
        logger.info(
            "Loaded tier policy",
            extra={"version": table.version, "feature_count": len(table.features())},
        )
        return table

    def parse(self, raw: Dict[str, Any]) -> TierPolicyTable:
        """Validate a decoded policy document and build the table."""
        if not isinstance(raw, dict):
            raise PolicyConfigError("Tier policy must be a mapping")

        version = raw.get("version")
        if not version:
            raise PolicyConfigError("Tier policy is missing a version")

        features_data = raw.get("features") or {}
        if not isinstance(features_data, dict):
            raise PolicyConfigError("'features' must be a mapping of feature id to settings")

        requirements: Dict[Feature, Tier] = {}
        descriptions: Dict[Feature, str] = {}
        for key, settings in features_data.items():
            feature = Feature.lookup(key)
            if feature is None:
                raise PolicyConfigError(f"Unregistered feature in tier policy: {key}")
            if isinstance(settings, str):
                settings = {"minimum_tier": settings}
            if not isinstance(settings, dict):
                raise PolicyConfigError(
                    f"Feature {key} must map to a tier name or a settings mapping, got {settings!r}"
                )
            requirements[feature] = self._parse_tier(settings.get("minimum_tier"), context=key)
            if settings.get("description"):
                descriptions[feature] = settings["description"]

        missing = [f.value for f in Feature if f not in requirements]
        if missing:
            raise PolicyConfigError(f"Tier policy has no entry for features: {missing}")

        tier_descriptions = {
            self._parse_tier(name, context="tiers"): text
            for name, text in (raw.get("tiers") or {}).items()
        }
        provider_prices = {
            str(price_id): self._parse_tier(tier_name, context=f"provider_prices.{price_id}")
            for price_id, tier_name in (raw.get("provider_prices") or {}).items()
        }

        return TierPolicyTable(
            version=str(version),
            requirements=requirements,
            feature_descriptions=descriptions,
            tier_descriptions=tier_descriptions,
            provider_prices=provider_prices,
        )

    @staticmethod
    def _parse_tier(value: Any, context: str) -> Tier:
        try:
            return Tier.parse(value)
        except (ValueError, AttributeError):
            raise PolicyConfigError(f"Unknown tier {value!r} in {context}")


def load_tier_policy(config_path: Optional[str] = None) -> TierPolicyTable:
    """Load the tier policy table from disk."""
    return TierPolicyLoader(config_path).load()


# Process-wide table
_policy_instance: Optional[TierPolicyTable] = None
_policy_lock = Lock()


def get_tier_policy() -> TierPolicyTable:
    """Get the process-wide TierPolicyTable, loading it on first use."""
    global _policy_instance
    if _policy_instance is None:
        with _policy_lock:
            if _policy_instance is None:
                _policy_instance = load_tier_policy()
    return _policy_instance
