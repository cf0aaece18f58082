"""
Module entry point for running the synchronization service.
"""
import asyncio

from .service import run


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
