#!/usr/bin/env python3
"""
Main entry point for the Graph Navigator API.
Handles server startup with environment-based configuration.
"""
import uvicorn
from graph_navigator.config import APP_PORT

if __name__ == "__main__":
    print(f"🚀 Starting Graph Navigator API on port {APP_PORT}")
    uvicorn.run(
        "graph_navigator.api:app",
        host="0.0.0.0",
        port=APP_PORT,
        reload=True,
        log_level="info"
    )
