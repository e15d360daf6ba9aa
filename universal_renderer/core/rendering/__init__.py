"""
Rendering Module
===============

Render engines and the machinery around them.

Components:
- base: Render engine interface
- remote: HTTP engine for an out-of-process rendering service
- process_pool: Pool of long-lived stdio worker processes
- selector: Configuration-driven engine selection
- forwarder: Relays a remote stream into a partially committed response
"""
