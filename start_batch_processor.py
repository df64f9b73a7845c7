#!/usr/bin/env python3
"""
Start the batch operation API and scheduler.

Usage:
    python start_batch_processor.py [--host 0.0.0.0] [--port 8000]
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import uvicorn

from config.settings import settings


def main():
    """Run the API with the scheduler attached"""
    parser = argparse.ArgumentParser(description="Voucher batch operation server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    settings.print_config()

    print("=" * 70)
    print("🚀 Starting Batch Operation Server")
    print("=" * 70)
    print(f"   Listening on: http://{args.host}:{args.port}")
    print(f"   Docs:         http://{args.host}:{args.port}/docs")
    print("=" * 70)
    print()

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\n🛑 Batch operation server stopped by user")
        sys.exit(0)
