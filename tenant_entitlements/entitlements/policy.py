"""
Tier policy table - which tier each feature requires.

Loaded once at process start (see loader.py) and immutable afterwards.
Changing policy requires a deployment, never a runtime mutation.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Union

from tenant_entitlements.entitlements.models import Feature, Tier


class TierPolicyTable:
    """
    Versioned mapping from feature to minimum required tier.

    Read-only after construction, so it is shared across threads without
    locking.
    """

    def __init__(
        self,
        version: str,
        requirements: Mapping[Feature, Tier],
        feature_descriptions: Optional[Mapping[Feature, str]] = None,
        tier_descriptions: Optional[Mapping[Tier, str]] = None,
        provider_prices: Optional[Mapping[str, Tier]] = None,
    ):
        self._version = version
        self._requirements: Mapping[Feature, Tier] = MappingProxyType(dict(requirements))
        self._by_value: Mapping[str, Tier] = MappingProxyType(
            {feature.value: tier for feature, tier in requirements.items()}
        )
        self._feature_descriptions = MappingProxyType(dict(feature_descriptions or {}))
        self._tier_descriptions = MappingProxyType(dict(tier_descriptions or {}))
        self._provider_prices = MappingProxyType(dict(provider_prices or {}))

    @property
    def version(self) -> str:
        return self._version

    def is_known_feature(self, feature: Union[str, Feature]) -> bool:
        key = feature.value if isinstance(feature, Feature) else feature
        return key in self._by_value

    def required_tier(self, feature: Union[str, Feature]) -> Tier:
        """
        Minimum tier for feature.

        Callers must check is_known_feature first; unknown features raise
        KeyError.
        """
        key = feature.value if isinstance(feature, Feature) else feature
        return self._by_value[key]

    @staticmethod
    def is_sufficient(have: Tier, need: Tier) -> bool:
        """Ordinal comparison: have >= need."""
        return Tier.parse(have).rank >= Tier.parse(need).rank

    def features(self) -> List[Feature]:
        return list(self._requirements.keys())

    def features_for_tier(self, tier: Tier) -> List[Feature]:
        return [
            feature for feature, need in self._requirements.items()
            if self.is_sufficient(tier, need)
        ]

    def describe_feature(self, feature: Union[str, Feature]) -> Optional[str]:
        member = Feature.lookup(feature)
        if member is None:
            return None
        return self._feature_descriptions.get(member)

    def describe_tier(self, tier: Tier) -> Optional[str]:
        return self._tier_descriptions.get(Tier.parse(tier))

    def tier_for_price(self, price_id: Optional[str]) -> Optional[Tier]:
        """Map a payment-provider price id to a tier, None if unmapped."""
        if not price_id:
            return None
        return self._provider_prices.get(price_id)

    def to_dict(self) -> Dict[str, object]:
        return {
            "version": self._version,
            "features": {
                feature.value: tier.value for feature, tier in self._requirements.items()
            },
        }

    def __repr__(self) -> str:
        return f"<TierPolicyTable(version={self._version}, features={len(self._requirements)})>"
