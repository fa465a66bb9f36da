"""
Main entry point for the peerlink relay.
Run with: python -m peerlink
"""
import asyncio

from peerlink.relay.server import main

if __name__ == "__main__":
    asyncio.run(main())
