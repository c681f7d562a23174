"""
FastAPI REST API Module

Serves the back-office API built by ``api_modular.create_app``. Runs on
port 8090 unless configured otherwise.
"""

import uvicorn

from .api_modular import create_app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "microfinance.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
