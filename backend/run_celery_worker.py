#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Development Celery worker runner for payment jobs.

Pass --beat to embed the beat scheduler (twice-weekly payouts, hourly
session mirror reconciliation) in the same process.
"""
import os
from pathlib import Path
import subprocess
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

if __name__ == "__main__":
    queues = os.getenv("CELERY_QUEUES") or os.getenv("CELERY_QUEUE") or "payments,celery"
    print(f"Starting Celery worker (ENVIRONMENT={os.environ['ENVIRONMENT']}) on queues: {queues}")

    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "app.tasks.celery_app",
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--max-tasks-per-child=100",
        "--pool=prefork",
        "-Q",
        queues,
    ]
    if "--beat" in sys.argv[1:]:
        cmd.append("--beat")

    subprocess.run(cmd)
