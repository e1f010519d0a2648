"""Durable command queue with idempotent submission and exactly-once claims."""

__version__ = "0.1.0"
