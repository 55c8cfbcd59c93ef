"""
Mostro Core Module

Protocol data shared by every layer:
- Configuration and structured logging
- Exception hierarchy
- Orders, daemon info and protocol messages
- Order validation
"""

__all__ = []
