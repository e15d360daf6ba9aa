"""
Rendering Service
=================

Service side of the boundary: the callbacks an application supplies to render
pages, and the stdio loop a persistent worker process runs.
"""
