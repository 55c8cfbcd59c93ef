"""Mostro client: request correlation, order cache and trading calls."""

from mostro.client.correlator import RequestCorrelator
from mostro.client.mostro import Mostro, PublicKeyType
from mostro.client.observers import MostroObserver
from mostro.client.orders import OrderManager

__all__ = ["Mostro", "MostroObserver", "OrderManager", "PublicKeyType", "RequestCorrelator"]
