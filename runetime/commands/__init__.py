"""
Command layer - request validation and dispatch.
"""
