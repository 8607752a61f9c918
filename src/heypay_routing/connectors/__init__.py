"""Provider connector implementations."""
from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.connectors.stripe import StripeConnector

__all__ = [
    "ProviderConnector",
    "StripeConnector",
]
