"""
FastAPI backend for the Fabric Stock Checker.

Provides REST API endpoints for:
- Service status and health checks
- Triggering an immediate stock check
- Listing configured suppliers
"""
