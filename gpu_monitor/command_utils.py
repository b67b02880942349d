import asyncio
import logging

logger = logging.getLogger(__name__)

# Return codes for failures that happen before the command reports its own exit status
RC_NOT_FOUND = -1
RC_TIMEOUT = -4
RC_OTHER_ERROR = -5


async def run_command_async(
    args: list[str], timeout: float | None = None
) -> tuple[int, bytes | None, str | None]:
    """Execute a local command without a shell and capture its output.

    Args:
        args: The program followed by its arguments.
        timeout: Seconds to wait before killing the process, or None to wait indefinitely.

    Returns:
        A tuple containing:
        - return_code (int): The exit code of the command, or RC_NOT_FOUND when the
                           program does not exist, RC_TIMEOUT when it was killed after
                           ``timeout``, RC_OTHER_ERROR for any other launch failure.
        - stdout (Optional[bytes]): The raw standard output, or None on error.
        - stderr (Optional[str]): The decoded standard error, or an error description.

    """
    logger.debug("Running command: %s", " ".join(args))

    try:
        proc = await asyncio.create_subprocess_exec(
            *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError:
        logger.warning("Command not found: %s", args[0])
        return RC_NOT_FOUND, None, f"executable file not found: {args[0]}"
    except OSError as e:
        logger.exception("Failed to launch command %s", args[0])
        return RC_OTHER_ERROR, None, f"failed to launch {args[0]}: {e}"

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Command %s timed out after %s seconds", args[0], timeout)
        return RC_TIMEOUT, None, f"{args[0]} timed out after {timeout} seconds"
    except BaseException:
        # Cancelled while waiting: do not leave the child running
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
            logger.info("Killed %s after the caller was cancelled", args[0])
        raise

    stderr_text = stderr.decode(errors="replace") if stderr else None
    logger.debug("Command %s finished with exit code %s", args[0], proc.returncode)
    if proc.returncode != 0 and stderr_text:
        logger.warning("Command stderr for %s: %s", args[0], stderr_text.strip())

    return proc.returncode, stdout, stderr_text
