"""
FastAPI application for the promotion engine.

Run with:
    uvicorn api.main:app --reload
"""
