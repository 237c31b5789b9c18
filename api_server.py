#!/usr/bin/env python
"""Entry point for the FastAPI backend server.

Serves the peer WebSocket (/ws), the chat endpoint and the event stream.

Usage:
    python api_server.py [--port 3001] [--host 127.0.0.1] [--verbose]
"""

import argparse
from datetime import datetime

import uvicorn

import config
from agent.logging import attach_log_file, setup_logging
from api.app import create_app

app = create_app()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="uipilot server")
    parser.add_argument("--port", type=int, default=config.HTTP_PORT)
    parser.add_argument("--host", type=str, default=config.HTTP_HOST)
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug events to the console")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    log_file = attach_log_file(datetime.now().strftime("%Y%m%d_%H%M%S"))
    print(f"uipilot server on http://{args.host}:{args.port} (peers: ws://{args.host}:{args.port}/ws)")
    print(f"Log file: {log_file}")
    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
