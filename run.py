"""
Startup script for the Backoffice Billing API
Reads PORT/HOST from environment and starts uvicorn server
"""
import os
import uvicorn
from backoffice.main import app

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    print(f"🚀 Starting Backoffice Billing API server...")
    print(f"📍 Binding to {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
