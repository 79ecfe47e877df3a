#!/usr/bin/env python3
"""Run the job worker and the sweep scheduler in one process."""
import asyncio
import logging

from digipay.infra.jobs.tasks import scheduler_loop, worker_loop

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    await asyncio.gather(worker_loop(), scheduler_loop())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
