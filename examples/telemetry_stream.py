#!/usr/bin/env python3
"""
telemetry_stream.py — Stream canonical telemetry from a Roomba.

Usage:
    python examples/telemetry_stream.py --address 192.168.1.50 --blid 3115850251687850 --password ...
    python examples/telemetry_stream.py --address 192.168.1.50 --blid ... --password ... --count 10
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from roombalink import RobotConfig, RoombaBridge

logging.basicConfig(level=logging.WARNING)


async def main(address: str, blid: str, password: str, count: int) -> None:
    print(f"\n📡 Streaming telemetry from {address} (blid={blid})")
    print(f"   Receiving up to {count} samples. Ctrl+C to stop.\n")
    print(f"{'#':>4}  {'Battery':>8}  {'Phase':>12}  {'Position':>14}  {'Heading':>8}")
    print("-" * 56)

    received = 0
    config = RobotConfig(address=address, blid=blid, password=password)
    async with RoombaBridge([config]) as bridge:
        async for envelope in bridge.events():
            if not envelope.is_telemetry:
                print(f"      {envelope.event}")
                continue
            sample = envelope.event
            received += 1
            pose = sample.pose
            position = f"({pose.x:.0f}, {pose.y:.0f})" if pose else "-"
            heading = f"{pose.heading:.0f}°" if pose else "-"
            print(
                f"{received:>4}  "
                f"{str(sample.battery) + '%':>8}  "
                f"{str(sample.phase):>12}  "
                f"{position:>14}  "
                f"{heading:>8}"
            )
            if received >= count:
                break

    print(f"\n✅ Received {received} telemetry samples.")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Stream Roomba telemetry")
    ap.add_argument("--address", required=True, help="Robot IP address")
    ap.add_argument("--blid", required=True, help="Robot BLID")
    ap.add_argument("--password", required=True, help="Robot local password")
    ap.add_argument("--count", type=int, default=20, help="Number of samples to receive")
    args = ap.parse_args()

    try:
        asyncio.run(main(args.address, args.blid, args.password, args.count))
    except KeyboardInterrupt:
        print("\nStopped.")
