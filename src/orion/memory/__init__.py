"""
memory/__init__.py — ORION Session Context
"""
