"""
Database setup script for RTM-Triage.

This script sets up the database schema for development and testing
environments.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rtm_triage.storage.setup import setup_database


async def main():
    """Main function."""
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        success = await setup_database(config_path)
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\nSetup cancelled by user")
        sys.exit(1)
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
