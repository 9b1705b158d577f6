"""
Canon - JSON Schemas for CodeStake configuration files.

Network profiles and quiz rubrics are plain JSON documents validated
against the schemas in canon/v1 before use.
"""

from .schemas import SchemaRegistry, SchemaValidationError, load_json, write_json

__all__ = ["SchemaRegistry", "SchemaValidationError", "load_json", "write_json"]
