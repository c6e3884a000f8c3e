#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Serves the API with auto-reload against whatever DATABASE_URL the
environment (or .env) provides.
"""
import os
import sys
from pathlib import Path

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting consultbook API at http://localhost:{port}")
    print(f"API docs: http://localhost:{port}/docs")

    uvicorn.run("consultbook.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
