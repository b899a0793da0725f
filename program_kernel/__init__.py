"""
Program Kernel

Shared foundation for the program financial analytics core:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
- Frozen ledger and EVM records with Decimal-only money
- SQLAlchemy persistence behind a row-store interface
"""

__version__ = "0.1.0"
