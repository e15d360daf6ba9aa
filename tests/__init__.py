"""
Test Suite
==========

Test suite matching the universal_renderer/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: Tests that start servers, worker processes and host applications
"""
