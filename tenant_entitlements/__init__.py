"""
Tenant entitlement resolution engine.

Decides, per workspace and gated feature, whether the feature is usable
right now and why not when it is denied.
"""

__version__ = "1.0.0"
