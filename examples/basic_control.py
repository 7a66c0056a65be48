#!/usr/bin/env python3
"""
basic_control.py — Start a Roomba, follow the mission and save its map.

Usage:
    python examples/basic_control.py --address 192.168.1.50 --blid 3115850251687850 --password ...
    python examples/basic_control.py --address ... --blid ... --password ... --dock-after 60
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from roombalink import (
    DeviceEvent,
    MapArtifact,
    MissionPhaseChange,
    NotConnectedError,
    RobotConfig,
    RoombaBridge,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(name)s  %(message)s")


async def main(address: str, blid: str, password: str, dock_after: float) -> None:
    print(f"\n🤖 Connecting to Roomba @ {address} (blid={blid})")
    finished = asyncio.Event()

    def on_event(envelope: DeviceEvent) -> None:
        event = envelope.event
        if isinstance(event, MissionPhaseChange):
            print(f"   Mission: {event.previous} → {event.phase}")
            if event.phase.is_terminal:
                print(f"   Runtime: {event.stats.runtime:.0f}s, poses: {event.stats.pose_count}")
        elif isinstance(event, MapArtifact):
            path = Path(f"{event.mission_id}.png")
            path.write_bytes(event.to_png())
            print(f"\n🗺️  Map saved to {path}")
            finished.set()

    config = RobotConfig(address=address, blid=blid, password=password)
    async with RoombaBridge([config]) as bridge:
        bridge.subscribe(on_event)

        print("\n▶️  Starting a cleaning mission...")
        for _ in range(20):
            try:
                await bridge.send_command(blid, "start")
                break
            except NotConnectedError:
                await asyncio.sleep(0.5)
        else:
            print("   (robot did not accept a connection)")
            return

        try:
            await asyncio.wait_for(finished.wait(), timeout=dock_after)
        except TimeoutError:
            print("\n🏠 Sending the robot home...")
            await bridge.send_command(blid, "dock")
            await finished.wait()

    print("\n✅ Done.")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Roomba basic local control")
    ap.add_argument("--address", required=True, help="Robot IP address")
    ap.add_argument("--blid", required=True, help="Robot BLID")
    ap.add_argument("--password", required=True, help="Robot local password")
    ap.add_argument(
        "--dock-after", type=float, default=120.0, help="Seconds to clean before docking"
    )
    args = ap.parse_args()

    asyncio.run(main(args.address, args.blid, args.password, args.dock_after))
