#!/usr/bin/env python3
"""
StakeWindow Command Line Interface.

Provides commands for running and inspecting StakeWindow:
    - serve: Start the API server
    - check: Verify installation and configuration
    - info: Display configuration and persisted pools
    - simulate: Run a two-staker reward scenario on an in-memory ledger

Usage:
    stakewindow serve [--host HOST] [--port PORT] [--debug]
    stakewindow check
    stakewindow info
    stakewindow simulate [--rewards N] [--stake N] [--duration SECONDS]
    stakewindow --version
"""

import argparse
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "staking_pool.py")):
    sys.path.insert(0, os.path.dirname(__file__))

__version__ = "0.1.0"


def cmd_serve(args):
    """Start the StakeWindow API server."""
    from dotenv import load_dotenv

    load_dotenv()

    from api import run_server

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting StakeWindow API server on {host}:{port}")
    run_server(host=host, port=port, debug=debug)


def cmd_check(args):
    """Check installation and configuration."""
    print("StakeWindow Installation Check")
    print("=" * 40)

    checks = []

    try:
        from config import StakingConfig

        config = StakingConfig.from_env()
        checks.append(("Configuration", "OK"))
        if config.require_auth and not config.api_key:
            checks.append(("API key", "WARN (STAKING_REQUIRE_AUTH set but STAKING_API_KEY missing)"))
        if not config.emergency_recovery:
            checks.append(("Emergency recovery", "WARN (STAKING_EMERGENCY_RECOVERY not set)"))
    except ValueError as e:
        checks.append(("Configuration", f"FAIL: {e}"))

    try:
        import flask  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    try:
        from storage import StorageError, get_storage_backend

        storage = get_storage_backend()
        status = "OK" if storage.is_available() else "WARN (not available)"
        checks.append((f"Storage ({storage.__class__.__name__})", status))
    except StorageError as e:
        checks.append(("Storage", f"FAIL: {e}"))

    try:
        import psycopg2  # noqa: F401

        checks.append(("PostgreSQL support", "OK"))
    except ImportError:
        checks.append(("PostgreSQL support", "SKIP (psycopg2 not installed)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    else:
        print("Some checks failed. See above for details.")
        return 1


def cmd_info(args):
    """Display configuration and persisted pools."""
    import platform

    from config import StakingConfig
    from storage import StorageError, get_storage_backend

    print("StakeWindow System Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    for key, value in StakingConfig.from_env().to_dict().items():
        print(f"  {key}: {value}")

    print()
    print("Storage:")
    try:
        storage = get_storage_backend()
        for key, value in storage.get_info().items():
            print(f"  {key}: {value}")
    except StorageError as e:
        print(f"  Error: {e}")

    return 0


def cmd_simulate(args):
    """
    Two stakers share one reward budget: A stakes for the whole window,
    B joins halfway. Prints the pending rewards at the midpoint and the end.
    """
    from pool_clock import ManualClock
    from pool_registry import PoolRegistry
    from token_ledger import InMemoryTokenLedger

    owner, alice, bob = "0xowner", "0xalice", "0xbob"
    clock = ManualClock(start=1_700_000_000)
    ledger = InMemoryTokenLedger()
    ledger.register_asset("STAKE")
    ledger.register_asset("RWD")

    registry = PoolRegistry(ledger, clock=clock, emergency_recovery="0xrecovery")
    start = clock.now() + 60
    pool = registry.create_pool(owner, "STAKE", "RWD", start, start + args.duration)

    ledger.mint("RWD", owner, args.rewards)
    ledger.approve("RWD", owner, pool.pool_id, args.rewards)
    pool.add_rewards(owner, args.rewards)

    for user in (alice, bob):
        ledger.mint("STAKE", user, args.stake)
        ledger.approve("STAKE", user, pool.pool_id, args.stake)

    clock.warp(start)
    pool.deposit(alice, args.stake)

    clock.warp(start + args.duration // 2)
    print(f"t+{args.duration // 2}s  pending(A) = {pool.pending_reward(alice)}")
    pool.deposit(bob, args.stake)

    clock.warp(start + args.duration)
    print(f"t+{args.duration}s  pending(A) = {pool.pending_reward(alice)}")
    print(f"t+{args.duration}s  pending(B) = {pool.pending_reward(bob)}")

    pool.withdraw(alice, args.stake)
    pool.withdraw(bob, args.stake)
    print(f"paid A = {ledger.balance_of('RWD', alice)}, paid B = {ledger.balance_of('RWD', bob)}")
    print(f"dust left in pool = {ledger.balance_of('RWD', pool.pool_id)}")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="stakewindow",
        description="StakeWindow - time-bounded staking pools",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    subparsers.add_parser("check", help="Check installation and configuration")

    subparsers.add_parser("info", help="Display system information")

    simulate_parser = subparsers.add_parser("simulate", help="Run a two-staker reward scenario")
    simulate_parser.add_argument("--rewards", type=int, default=100_000 * 10**18)
    simulate_parser.add_argument("--stake", type=int, default=1_000 * 10**18)
    simulate_parser.add_argument("--duration", type=int, default=86_400)

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    elif args.command == "simulate":
        sys.exit(cmd_simulate(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
