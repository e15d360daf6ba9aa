"""
Configuration Management
=======================

Environment-based configuration using Pydantic Settings.

Components:
- settings: Engine, pool and service settings resolved from the environment
- logging: Structured logging configuration
"""
