#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Development Celery runner for the notification outbox.

Starts one worker on the ``notifications`` queue with an embedded beat
scheduler, so ``outbox.dispatch_pending`` fires without a separate process.
"""
import os
from pathlib import Path
import subprocess
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

if __name__ == "__main__":
    queues = os.getenv("CELERY_QUEUES") or "notifications,celery"
    print(f"Starting Celery worker with beat, consuming queues: {queues}")

    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "consultbook.tasks.celery_app",
        "worker",
        "--beat",
        "--loglevel=info",
        "--concurrency=2",
        "--max-tasks-per-child=100",
        "-Q",
        queues,
    ]
    try:
        subprocess.run(cmd, check=True)
    except KeyboardInterrupt:
        print("\nCelery worker stopped")
