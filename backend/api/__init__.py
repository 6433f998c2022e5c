"""REST API layer - FastAPI app, routes and dependencies"""
