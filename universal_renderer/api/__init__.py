"""
API Layer
=========

FastAPI application for the rendering service and the host-side response shim.
"""
