#!/usr/bin/env python3
"""PayGate device traffic simulator.

Registers simulated field phones, then has each one send signed heartbeats
and bank SMS payments, exercising the whole authentication path.

Usage:
    # 5 devices for one minute, 10 payments per minute each
    python -m tools.simulator.simulate --server http://localhost:8000 --devices 5 --duration 60

    # Push one device past its rate limit
    python -m tools.simulator.simulate --devices 1 --payments-per-minute 120

    # Send payments with a tampered amount (every one should be rejected)
    python -m tools.simulator.simulate --tamper
"""

from __future__ import annotations

import argparse
import asyncio
import random
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field

import httpx

from paygate.core.models import BANKS
from paygate.core.signing import sign_payload

_SMS_TEMPLATES = {
    "Telebirr": "You have received {amount:.2f} ETB from {sender_phone}. Transaction ID {txn}.",
    "CBE": "Dear Customer, your account has been credited with ETB {amount:.2f} by {sender_phone}. Ref {txn}.",
    "Dashen": "Dashen Bank: ETB {amount:.2f} credited to your account from {sender_phone}. {txn}",
    "Awash": "Awash Bank: Your account credited ETB {amount:.2f}. Ref {txn}",
}


@dataclass
class SimDevice:
    device_id: str
    secret_key: str = ""
    payments_sent: int = 0
    heartbeats_sent: int = 0
    responses: Counter = field(default_factory=Counter)


def make_payment(device: SimDevice) -> dict:
    """Create one plausible bank SMS payment payload (unsigned)."""
    bank = random.choice([b for b in BANKS if b != "Unknown"])
    amount = round(random.uniform(10, 5000), 2)
    sender_phone = f"+2519{random.randint(10_000_000, 99_999_999)}"
    txn = uuid.uuid4().hex[:10].upper()
    template = _SMS_TEMPLATES.get(bank, "{amount:.2f} ETB received from {sender_phone} ({txn})")
    return {
        "message_id": f"{device.device_id}-{txn}",
        "bank": bank,
        "amount": amount,
        "sender": bank.upper(),
        "from": sender_phone,
        "raw_text": template.format(amount=amount, sender_phone=sender_phone, txn=txn),
        "sms_timestamp_ms": int(time.time() * 1000),
    }


async def register_device(client: httpx.AsyncClient, server_url: str, device: SimDevice) -> bool:
    resp = await client.post(
        f"{server_url}/api/v1/devices/register",
        json={"device_id": device.device_id, "name": f"Simulated {device.device_id[:8]}"},
    )
    if resp.status_code != 201:
        print(f"  register {device.device_id[:8]} failed: {resp.status_code} {resp.text}")
        return False
    device.secret_key = resp.json()["device"]["secret_key"]
    return True


async def send_signed(
    client: httpx.AsyncClient,
    url: str,
    device: SimDevice,
    payload: dict,
    tamper: bool = False,
) -> int:
    now_ms = int(time.time() * 1000)
    body, headers = sign_payload(device.device_id, device.secret_key, payload, now_ms)
    if tamper and "amount" in body:
        body["amount"] = body["amount"] + 1
    resp = await client.post(url, json=body, headers=headers)
    device.responses[resp.status_code] += 1
    return resp.status_code


async def run_device(
    client: httpx.AsyncClient,
    device: SimDevice,
    server_url: str,
    payments_per_minute: float,
    duration_seconds: float,
    tamper: bool,
) -> None:
    """Simulate a single device: heartbeat every 30s, payments at a fixed rate."""
    interval = 60.0 / payments_per_minute
    end_time = time.monotonic() + duration_seconds
    next_heartbeat = time.monotonic()

    while time.monotonic() < end_time:
        try:
            if time.monotonic() >= next_heartbeat:
                await send_signed(client, f"{server_url}/api/v1/devices/heartbeat", device, {})
                device.heartbeats_sent += 1
                next_heartbeat = time.monotonic() + 30.0

            status = await send_signed(
                client, f"{server_url}/api/v1/sms/receive", device,
                make_payment(device), tamper=tamper,
            )
            if status == 202:
                device.payments_sent += 1
        except httpx.RequestError:
            device.responses["error"] += 1

        await asyncio.sleep(interval)


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    devices = [SimDevice(device_id=f"sim-{uuid.uuid4()}") for _ in range(args.devices)]

    print(f"Starting simulation: {args.devices} devices, "
          f"{args.payments_per_minute} payments/min each")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print(f"  Tampered signatures: {args.tamper}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        registered = [
            dev for dev, ok in zip(
                devices,
                await asyncio.gather(*(register_device(client, args.server, d) for d in devices)),
            ) if ok
        ]
        await asyncio.gather(*(
            run_device(client, dev, args.server, args.payments_per_minute,
                       args.duration, args.tamper)
            for dev in registered
        ))

        elapsed = time.monotonic() - start
        responses: Counter = Counter()
        for dev in registered:
            responses.update(dev.responses)

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Devices registered: {len(registered)}/{len(devices)}")
        print(f"  Payments accepted: {sum(d.payments_sent for d in registered)}")
        print(f"  Heartbeats sent: {sum(d.heartbeats_sent for d in registered)}")
        print(f"  Responses by status: {dict(responses)}")

        resp = await client.get(f"{args.server}/api/v1/stats")
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Auth accepted: {stats['auth']['accepted']}")
            print(f"  Auth rejected: {stats['auth']['rejected_by_reason']}")
            print(f"  Payments stored: {stats['payments_stored']}")
            print(f"  Active devices: {stats['active_devices']['total']}")


def main():
    parser = argparse.ArgumentParser(description="PayGate device traffic simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--devices", type=int, default=5, help="Number of simulated devices")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--payments-per-minute", type=float, default=10,
                        help="Payments per minute per device")
    parser.add_argument("--tamper", action="store_true",
                        help="Alter each payment after signing")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
