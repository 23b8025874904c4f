"""
API module - FastAPI application, HTTP routes and WebSocket push.
"""
