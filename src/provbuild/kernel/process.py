"""External command execution with concurrent log capture.

Each output stream of a child process is drained by its own thread into a
temp file. In verbose mode every line is also forwarded, in order, to a
shared queue that the calling thread prints from while capture is still
running. A coordinator thread joins the drainers and only then closes both
queues, so the caller never blocks on results before all streams are empty.
The child is reaped only after every stream has been read to EOF; waiting
earlier can deadlock once a pipe buffer fills.
"""

import logging
import os
import queue
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict

from .errors import CommandError, LogCaptureError

logger = logging.getLogger(__name__)

OUTPUT_BANNER = "\n\n>>>>>>>>>>>>>> output from command <<<<<<<<<<<<<<"

# Posted to both queues once every drainer is done.
_CLOSED = object()

EchoFn = Callable[[str], None]


class CommandLogs(BaseModel):
    """Temp files holding a finished command's stdout and stderr."""
    stdout_log: Path
    stderr_log: Path

    model_config = ConfigDict(frozen=True)

    def remove(self) -> None:
        """Best-effort removal of both log files."""
        for path in (self.stdout_log, self.stderr_log):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("failed to remove temp file %r: %s", str(path), e)


def _drain_stream(
    index: int,
    stream: BinaryIO,
    verbose: bool,
    results: "queue.Queue",
    lines: "queue.Queue",
) -> None:
    """Read one stream to EOF, then persist everything to a temp file.

    The result (a path or the exception) goes onto ``results`` tagged with
    the stream index, so callers get files back in stream order.
    """
    data = bytearray()
    try:
        for raw in iter(stream.readline, b""):
            if not raw.endswith(b"\n"):
                raw += b"\n"
            data += raw
            if verbose:
                lines.put(raw.rstrip(b"\r\n").decode("utf-8", errors="replace"))
    except (OSError, ValueError) as e:
        results.put((index, LogCaptureError(f"couldn't read command output: {e}")))
        return

    try:
        fd, name = tempfile.mkstemp(prefix="log-", suffix=".txt")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
    except OSError as e:
        results.put((index, LogCaptureError(f"couldn't write bytes to tempfile: {e}")))
        return
    results.put((index, Path(name)))


def save_to_temp_files(
    streams: Sequence[BinaryIO],
    verbose: bool = False,
    echo: Optional[EchoFn] = None,
) -> List[Path]:
    """Drain all streams concurrently into one temp file each.

    Args:
        streams: Binary readable streams, e.g. a child's stdout and stderr
        verbose: Forward each line to ``echo`` while capturing
        echo: Sink for live lines (defaults to ``print``)

    Returns:
        Temp file paths, in the same order as ``streams``

    Raises:
        LogCaptureError: If any temp file could not be written
    """
    echo = echo or print
    if verbose:
        echo(OUTPUT_BANNER)

    results: "queue.Queue" = queue.Queue()
    lines: "queue.Queue" = queue.Queue()

    drainers = [
        threading.Thread(
            target=_drain_stream,
            args=(i, stream, verbose, results, lines),
            name=f"drain-{i}",
            daemon=True,
        )
        for i, stream in enumerate(streams)
    ]
    for t in drainers:
        t.start()

    def _coordinate() -> None:
        for t in drainers:
            t.join()
        lines.put(_CLOSED)
        results.put(_CLOSED)

    threading.Thread(target=_coordinate, name="drain-coordinator", daemon=True).start()

    # Live output until every drainer is done.
    while True:
        line = lines.get()
        if line is _CLOSED:
            break
        echo(line)

    collected: List[Tuple[int, Union[Path, Exception]]] = []
    while True:
        item = results.get()
        if item is _CLOSED:
            break
        collected.append(item)
    collected.sort(key=lambda pair: pair[0])

    files: List[Path] = []
    first_error: Optional[Exception] = None
    for _, outcome in collected:
        if isinstance(outcome, Exception):
            first_error = first_error or outcome
        else:
            files.append(outcome)
    if first_error is None and len(files) != len(streams):
        first_error = LogCaptureError(
            f"captured {len(files)} of {len(streams)} output streams"
        )
    if first_error is not None:
        for path in files:
            try:
                path.unlink()
            except OSError:
                pass
        raise first_error
    return files


def run_command(
    argv: Sequence[str],
    cwd: Union[str, Path],
    verbose: bool = False,
    echo: Optional[EchoFn] = None,
) -> CommandLogs:
    """Run a command, capturing its stdout and stderr into temp files.

    Args:
        argv: Program and arguments
        cwd: Working directory for the command
        verbose: Echo the command's output live
        echo: Sink for live output lines

    Returns:
        CommandLogs pointing at the captured output

    Raises:
        CommandError: If the command cannot be started or exits non-zero;
            the error names the log files
        LogCaptureError: If the output could not be written to temp files
    """
    argv = list(argv)
    logger.info("Running command: %r.", " ".join(argv))
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(f"couldn't start the {argv[0]!r} command: {e}", argv) from e

    try:
        files = save_to_temp_files([proc.stdout, proc.stderr], verbose=verbose, echo=echo)
    finally:
        proc.stdout.close()
        proc.stderr.close()
        # Both streams are at EOF (or closed) here, so reaping cannot block on a full pipe.
        returncode = proc.wait()

    logs = CommandLogs(stdout_log=files[0], stderr_log=files[1])
    if returncode != 0:
        raise CommandError(
            f"failed to complete the command: exit status {returncode}",
            argv,
            returncode=returncode,
            stdout_log=logs.stdout_log,
            stderr_log=logs.stderr_log,
        )
    return logs
