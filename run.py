#!/usr/bin/env python3
"""
Bank Time Simulator Entry Point

Starts the FastAPI server (port 8090 by default) over the simulated bank.
Pass --demo to seed an empty database with the demo customers and accounts.
"""

import sys
import argparse
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import bank_simulator.api as api
from bank_simulator.config import get_config
from bank_simulator.logging_config import setup_logging


def main():
    config = get_config()

    parser = argparse.ArgumentParser(description="Bank Time Simulator API server")
    parser.add_argument("--host", default=config.api_host)
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--demo", action="store_true", help="Load demo data into an empty database")
    args = parser.parse_args()

    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)

    api.bank_system = api.BankSystem(use_sqlite=True, config=config, load_demo=args.demo)

    print("Starting Bank Time Simulator...")
    print(f"Simulated date: {api.bank_system.context.current_date.isoformat()}")
    print(f"Database: {config.database_path}")
    print(f"API available at: http://{args.host}:{args.port}")
    print(f"Documentation at: http://{args.host}:{args.port}/docs")
    print()

    try:
        api.run_server(host=args.host, port=args.port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        print("\nShutting down Bank Time Simulator...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
