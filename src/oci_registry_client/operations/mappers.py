"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Tuple, Type, TypeVar

import httpx
import typer

from ..errors import (
    BadDigestError,
    ForbiddenError,
    NotFoundError,
    ParseError,
    UnauthorizedError,
    UnsupportedError,
    UploadError,
)

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins
EXIT_CODES: List[Tuple[Type[BaseException], int]] = [
    (NotFoundError, 1),
    (UnauthorizedError, 4),
    (ForbiddenError, 4),
    (BadDigestError, 5),
    (UploadError, 6),
    (ParseError, 2),
    (UnsupportedError, 2),
    (ValueError, 2),
    (FileNotFoundError, 2),
    (httpx.HTTPError, 3),
]


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 1: Repository, manifest or blob not found (NotFoundError)
    - 2: Invalid input (ParseError, UnsupportedError, ValueError)
    - 3: HTTP/network error or unknown error
    - 4: Authentication/authorization failure (401/403)
    - 5: Digest mismatch (BadDigestError)
    - 6: Push failure (UploadError)

    Args:
        exc: Exception to map

    Returns:
        Exit code (1-6, with 3 as fallback for unknown exceptions)
    """
    for exc_type, code in EXIT_CODES:
        if isinstance(exc, exc_type):
            return code
    return 3


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit, after printing the error message.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        from .printers import print_error
        logger.debug("Command failed", exc_info=True)
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e
