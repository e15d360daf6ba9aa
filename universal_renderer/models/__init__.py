"""
Data Models
===========

Pydantic models for the render wire protocol and internal result types.
"""
