"""Org module — Department and Employee models, lead resolution."""

from leave_engine.org.models import Department, Employee

__all__ = ["Employee", "Department"]
