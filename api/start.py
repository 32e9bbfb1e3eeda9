#!/usr/bin/env python3
"""
Startup script for the LVE360 Stack API
"""
import os
import uvicorn
from main import api, HOST, PORT

if __name__ == "__main__":
    port = int(os.getenv("PORT", PORT))
    host = os.getenv("HOST", HOST)

    print(f"Starting LVE360 Stack API on {host}:{port}")
    print(f"Environment: {os.getenv('ENVIRONMENT', 'development')}")

    uvicorn.run(
        "main:api",
        host=host,
        port=port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        access_log=True
    )
