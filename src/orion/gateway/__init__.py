"""
gateway/__init__.py — ORION WebSocket Gateway
"""
