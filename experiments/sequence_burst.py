#!/usr/bin/env python3
"""
Burst test for booking identifiers.
Fires simultaneous creates at a running API and checks that the issued
sequences are unique and contiguous from the domain total.
"""

import asyncio
import os
import time
from typing import List

import aiohttp

API_URL = os.getenv("API_URL", "http://localhost:8000")
CONCURRENT_CLIENTS = int(os.getenv("CONCURRENT_CLIENTS", "50"))


class SequenceBurst:
    def __init__(self):
        self.results = {
            "created": 0,
            "failed": 0,
            "errors": 0,
            "response_times": [],
        }
        self.sequences: List[int] = []
        self.tickets: List[str] = []

    async def domain_total(self, session: aiohttp.ClientSession) -> int:
        async with session.get(f"{API_URL}/api/v1/counters/") as resp:
            data = await resp.json()
            return data["confirmed"]["total"] + data["manual"]["total"]

    async def create_booking(self, session: aiohttp.ClientSession, client_num: int):
        start = time.time()
        payload = {
            "name": f"Burst Guest {client_num}",
            "email": f"burst_{client_num}_{int(start)}@test.com",
            "phone": f"90000{client_num:05d}",
            "theaterName": "Burst Theatre",
            "date": "2030-01-01",
            "time": "6:00 PM - 9:00 PM",
            "totalAmount": 1000,
        }
        try:
            async with session.post(f"{API_URL}/api/v1/bookings/", json=payload) as resp:
                elapsed = (time.time() - start) * 1000
                self.results["response_times"].append(elapsed)

                if resp.status == 201:
                    data = await resp.json()
                    self.results["created"] += 1
                    self.tickets.append(data["ticketNumber"])
                    suffix = data["bookingId"].rsplit("-", 1)[1]
                    if suffix.isdigit():
                        self.sequences.append(int(suffix))
                    else:
                        print(f"! Client {client_num} got fallback id {data['bookingId']}")
                else:
                    self.results["failed"] += 1
                    print(f"✗ Client {client_num} failed: {resp.status} ({elapsed:.0f}ms)")
        except aiohttp.ClientError as e:
            self.results["errors"] += 1
            print(f"✗ Client {client_num} error: {e}")

    async def run(self):
        print(f"\n{'='*60}")
        print(f"SEQUENCE BURST: {CONCURRENT_CLIENTS} simultaneous creates")
        print(f"{'='*60}\n")

        async with aiohttp.ClientSession() as session:
            before = await self.domain_total(session)
            print(f"Domain total before burst: {before}\n")

            start_time = time.time()
            await asyncio.gather(*(self.create_booking(session, i) for i in range(CONCURRENT_CLIENTS)))
            total_time = time.time() - start_time

        print("\n" + "="*60)
        print("RESULTS")
        print("="*60)
        print(f"Total time: {total_time:.2f}s")
        print(f"Created:    {self.results['created']}")
        print(f"Failed:     {self.results['failed']}")
        print(f"Errors:     {self.results['errors']}")

        if self.results["response_times"]:
            times = sorted(self.results["response_times"])
            print("\nResponse times:")
            print(f"  Avg: {sum(times)/len(times):.0f}ms")
            print(f"  P50: {times[len(times)//2]:.0f}ms")
            print(f"  P95: {times[int(len(times)*0.95)]:.0f}ms")

        print("\n" + "="*60)
        duplicates = len(self.sequences) - len(set(self.sequences))
        expected = list(range(before + 1, before + 1 + len(self.sequences)))
        if duplicates:
            print(f"✗ FAIL: {duplicates} duplicate sequence(s)")
        elif len(set(self.tickets)) != len(self.tickets):
            print("✗ FAIL: duplicate ticket numbers")
        elif sorted(self.sequences) != expected:
            print("✗ FAIL: sequences are not contiguous")
            print(f"  got {sorted(self.sequences)[:5]}... expected from {before + 1}")
        else:
            print(f"✓ PASS: {len(self.sequences)} unique, contiguous sequences from {before + 1}")
        print("="*60 + "\n")


if __name__ == "__main__":
    asyncio.run(SequenceBurst().run())
