"""
Pre-backup command runner.

Commands run one after another, each as a program path without arguments
and without a shell. The first failure stops the sequence.
"""

import logging
import os
import shutil
import subprocess
from typing import List, Sequence

from .errors import CommandFailed


logger = logging.getLogger(__name__)


def run_commands(commands: Sequence[str]):
    """
    Execute commands in order, waiting for each to finish.

    Args:
        commands: Program paths to execute

    Raises:
        CommandFailed: If a command cannot be launched or exits non-zero
    """
    if not commands:
        return

    logger.info("Execute commands")
    for command in commands:
        logger.info(f"Execute '{command}' ...")
        try:
            completed = subprocess.run([command], check=False)
        except OSError as e:
            logger.error(f"Can't launch '{command}': {e}")
            raise CommandFailed(command, e)

        logger.info(f"Status of '{command}': {completed.returncode}")
        if completed.returncode != 0:
            raise CommandFailed(command, f"exit status {completed.returncode}")


def check_commands(commands: Sequence[str]) -> List[str]:
    """
    Find commands that cannot be resolved.

    Args:
        commands: Program paths to check

    Returns:
        Commands that are neither existing paths nor found on PATH
    """
    missing = []
    for command in commands:
        if not os.path.exists(command) and shutil.which(command) is None:
            logger.error(f"Command file '{command}' does not exist")
            missing.append(command)
    return missing
