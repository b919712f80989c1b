"""Kernel-owned ORM models."""

from supply_kernel.models.event_log import DomainEventRecord

__all__ = ["DomainEventRecord"]
