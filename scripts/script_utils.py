"""
Shared utilities for CLI scripts.

Provides common patterns for:
- Database session management
- CLI argument parsing
- Output formatting
"""

import argparse
import asyncio
import io
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

# Handle Windows UTF-8 output
if sys.platform == 'win32':
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import async_session_maker


# =============================================================================
# DATABASE UTILITIES
# =============================================================================

@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Get an async database session with proper cleanup."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# =============================================================================
# CLI UTILITIES
# =============================================================================

def create_loan_parser(description: str) -> argparse.ArgumentParser:
    """Create an argument parser for scripts acting on one loan."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        '--loan-id',
        type=str,
        required=True,
        help='Loan application ID'
    )
    parser.add_argument(
        '--address',
        type=str,
        default='',
        help='Caller wallet address (owner checks use this)'
    )
    parser.add_argument(
        '--approver',
        action='store_true',
        help='Read as a reviewer, skipping the ownership check'
    )
    return parser


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

def print_header(title: str, width: int = 70) -> None:
    """Print a formatted header."""
    print('=' * width)
    print(title)
    print('=' * width)


def print_subheader(title: str, width: int = 70) -> None:
    """Print a formatted subheader."""
    print('-' * width)
    print(title)
    print('-' * width)


def print_summary(stats: dict, width: int = 70) -> None:
    """Print a summary of statistics."""
    print()
    print('=' * width)
    print('SUMMARY')
    print('=' * width)
    for key, value in stats.items():
        print(f"  {key}: {value}")


# =============================================================================
# COMMON PATTERNS
# =============================================================================

def run_async(coro):
    """Run async function with proper event loop handling."""
    if sys.platform == 'win32':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    return asyncio.run(coro)
