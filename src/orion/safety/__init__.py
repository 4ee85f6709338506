"""
safety/__init__.py — ORION Content-Safety Guard
"""
