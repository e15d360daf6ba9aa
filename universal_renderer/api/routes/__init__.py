"""
API Routes
==========

Route modules for the rendering service.
"""
