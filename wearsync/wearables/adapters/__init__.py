"""Health store adapters for wearsync.

Available adapters:
    HealthConnectBridge — Android Health Connect via the companion HTTP bridge
"""

from wearsync.wearables.adapters.health_connect import HealthConnectBridge

__all__ = ["HealthConnectBridge"]
