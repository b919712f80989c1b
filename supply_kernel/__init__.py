"""
Supply Kernel

Infrastructure shared by the inventory, procurement, payables and credit
modules:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- SQLAlchemy base classes, engine and exact decimal column types
- Append-only enforcement for stock movements and domain events
- Workflow value objects, clock, domain events
- Keyed locks, document numbering, event publishing
"""

__version__ = "0.1.0"
