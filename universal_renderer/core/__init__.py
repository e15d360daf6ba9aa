"""
Core Business Logic
==================

Host-side core of the renderer bridge.

Modules:
- markers: Sentinel marker protocol and document composition
- props: Request property bag
- rendering: Render engines, engine selection and the streaming forwarder
"""
