"""
Universal Renderer
==================

Bridge between a request-serving host application and an out-of-process
rendering service, delivering pages either as one complete payload or as a
progressively streamed HTML document.

This package provides:
- Sentinel marker protocol for splitting and composing HTML templates
- Remote streaming engine talking JSON over HTTP to a rendering service
- Persistent-process engine backed by a pool of stdio worker processes
- Streaming forwarder relaying remote bytes into a committed response
- FastAPI rendering service and a stdio worker loop for the service side
"""

__version__ = "1.0.0"
__author__ = "Universal Renderer Team"
