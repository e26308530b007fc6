#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Creates the ledger tables in the configured database, then serves the
API with auto-reload. For local development only.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

import uvicorn

from ridepay.init_db import init_db

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting RidePay API on http://localhost:{port} (docs at /docs)")

    init_db()
    uvicorn.run("ridepay.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
