"""
Initialize Firestore with default data for AutoExit.

Usage:
    python scripts/init_firestore.py

This script creates:
- The trading settings document with default trailing stop-loss values
- An empty trailing stop-loss status
"""

import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.firestore_client import FirestoreClient
from shared.models import TradingSettings


async def init_trading_settings(client: FirestoreClient) -> None:
    """Initialize the trading settings document."""
    print("Initializing trading settings...")

    existing = await client.get_trading_settings_document()
    if existing:
        normalized = TradingSettings.model_validate(existing)
        print(f"  Settings already exist (capital={normalized.total_capital})")
        response = input("  Reset to defaults? (y/N): ")
        if response.lower() != "y":
            print("  Skipping settings reset")
            return

    defaults = TradingSettings().model_dump(by_alias=True)
    await client.update_trading_settings(defaults)
    for key, value in defaults.items():
        print(f"  {key}: {value}")


async def init_trailing_status(client: FirestoreClient) -> None:
    """Clear any stale trailing stop-loss status."""
    print("\nClearing trailing stop-loss status...")
    deleted = await client.clear_trailing_status()
    print(f"  Removed {deleted} document(s)")


async def verify_connection(client: FirestoreClient) -> bool:
    """Verify Firestore connection."""
    print("Verifying Firestore connection...")
    try:
        await client.get_trailing_status()
        print("  Connection successful!")
        return True
    except Exception as e:
        print(f"  Connection failed: {e}")
        print("\nTroubleshooting:")
        print("  1. Ensure GCP_PROJECT_ID is set correctly")
        print("  2. Ensure GOOGLE_APPLICATION_CREDENTIALS points to a valid service account key")
        print("  3. Ensure the service account has Firestore access")
        return False


async def main() -> None:
    """Main initialization function."""
    print("=" * 60)
    print("AutoExit Firestore Initialization")
    print("=" * 60)
    print()

    project_id = os.environ.get("GCP_PROJECT_ID")
    credentials = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

    print(f"Project ID: {project_id or 'NOT SET'}")
    print(f"Credentials: {credentials or 'NOT SET'}")
    print()

    if not project_id:
        print("ERROR: GCP_PROJECT_ID environment variable not set")
        print("Run: export GCP_PROJECT_ID=your-project-id")
        sys.exit(1)

    client = FirestoreClient()

    if not await verify_connection(client):
        sys.exit(1)

    print()
    await init_trading_settings(client)
    await init_trailing_status(client)

    print()
    print("=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    print()
    print("Next steps:")
    print("  1. Start the trader: uvicorn services.trader.main:app --port 8004")
    print("  2. Start the monitor: uvicorn services.monitor.main:app --port 8003")
    print("  3. Start monitoring: curl -X POST http://localhost:8003/auto-exit-monitor -H 'Content-Type: application/json' -d '{\"action\": \"start\"}'")


if __name__ == "__main__":
    asyncio.run(main())
