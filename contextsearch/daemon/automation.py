"""External process and OS automation boundary.

Every call out of the daemon (mdfind, shortcuts, osascript) goes through
``run_process`` so that timeouts, output caps and permission failures are
handled in one place. User-controlled strings reach automation scripts only
through ``escape_script_string``.
"""

import asyncio
from dataclasses import dataclass
from string import Template
from typing import List, Optional, Sequence

from loguru import logger

from .models import RawWindow


FIELD_SEPARATOR = "|||"
RECORD_SEPARATOR = "\n"

_PERMISSION_MARKERS = (
    "not authorized",
    "not allowed to send apple events",
    "-1743",
)


class AutomationError(Exception):
    """Base class for failures talking to external processes."""


class ProcessTimeout(AutomationError):
    def __init__(self, program: str, timeout: float):
        super().__init__(f"{program} timed out after {timeout:.1f}s")
        self.program = program
        self.timeout = timeout


class ProcessFailed(AutomationError):
    def __init__(self, program: str, returncode: int, stderr: str = ""):
        super().__init__(f"{program} exited with {returncode}: {stderr.strip()[:200]}")
        self.program = program
        self.returncode = returncode
        self.stderr = stderr


class PermissionDenied(AutomationError):
    """Automation or accessibility permission has not been granted."""


@dataclass
class ProcessOutput:
    stdout: str
    stderr: str = ""
    truncated: bool = False


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def _collect(proc: asyncio.subprocess.Process,
                   max_output_bytes: Optional[int]) -> tuple:
    stderr_task = asyncio.ensure_future(proc.stderr.read())
    chunks: List[bytes] = []
    size = 0
    truncated = False

    while True:
        chunk = await proc.stdout.read(65536)
        if not chunk:
            break
        if max_output_bytes is not None and size + len(chunk) > max_output_bytes:
            chunks.append(chunk[:max_output_bytes - size])
            truncated = True
            break
        chunks.append(chunk)
        size += len(chunk)

    if truncated:
        _kill(proc)

    stderr = await stderr_task
    returncode = await proc.wait()
    return b"".join(chunks), stderr, returncode, truncated


async def run_process(args: Sequence[str],
                      timeout: float,
                      max_output_bytes: Optional[int] = None) -> ProcessOutput:
    """
    Run an external program without a shell.

    Args:
        args: Program and arguments
        timeout: Seconds before the child is killed
        max_output_bytes: Cap on captured stdout; excess is dropped

    Returns:
        Captured output. ``truncated`` is set when the cap was hit.

    Raises:
        ProcessTimeout: The program ran past ``timeout``
        PermissionDenied: The OS refused automation access
        ProcessFailed: Spawn failure or non-zero exit
    """
    program = args[0]
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise ProcessFailed(program, 127, str(e)) from e
    except PermissionError as e:
        raise ProcessFailed(program, 126, str(e)) from e

    try:
        raw_out, raw_err, returncode, truncated = await asyncio.wait_for(
            _collect(proc, max_output_bytes),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise ProcessTimeout(program, timeout)
    except asyncio.CancelledError:
        _kill(proc)
        raise

    stdout = raw_out.decode("utf-8", errors="replace")
    stderr = raw_err.decode("utf-8", errors="replace")

    if truncated:
        logger.warning(f"{program} produced more than {max_output_bytes} bytes, using partial output")
        return ProcessOutput(stdout=stdout, stderr=stderr, truncated=True)

    if returncode != 0:
        lowered = stderr.lower()
        if any(marker in lowered for marker in _PERMISSION_MARKERS):
            raise PermissionDenied(stderr.strip() or f"{program} was not authorized")
        raise ProcessFailed(program, returncode, stderr)

    return ProcessOutput(stdout=stdout, stderr=stderr)


async def run_osascript(script: str, timeout: float, language: str = "JavaScript") -> str:
    """Run an inline automation script and return its stdout."""
    output = await run_process(
        ["osascript", "-l", language, "-e", script],
        timeout=timeout,
        max_output_bytes=5 * 1024 * 1024
    )
    if output.stderr.strip():
        logger.debug(f"osascript stderr: {output.stderr.strip()[:200]}")
    return output.stdout


def escape_script_string(value) -> str:
    """
    Escape a value for a double- or single-quoted script string literal.

    Backslashes are escaped first so later escapes are not doubled.
    """
    if not isinstance(value, str):
        return ""
    return (
        value
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _positive_int(value: str) -> Optional[int]:
    try:
        number = int(value.strip())
    except (TypeError, ValueError):
        return None
    return number if number >= 1 else None


def parse_discovery_records(text: str,
                            default_owner: Optional[str] = None,
                            kind: str = "window") -> List[RawWindow]:
    """
    Parse ``title|||url|||windowIndex|||tabIndex|||ownerApp`` records.

    Malformed records are skipped; the rest of the batch is kept.
    """
    windows: List[RawWindow] = []
    if not text:
        return windows

    skipped = 0
    for record in text.split(RECORD_SEPARATOR):
        record = record.strip()
        if not record:
            continue

        parts = [p.strip() for p in record.split(FIELD_SEPARATOR)]
        if len(parts) < 4:
            skipped += 1
            continue

        title, url = parts[0], parts[1]
        window_index = _positive_int(parts[2])
        tab_index = _positive_int(parts[3])
        owner = parts[4] if len(parts) > 4 and parts[4] else default_owner

        if not title or window_index is None or tab_index is None or not owner:
            skipped += 1
            continue

        windows.append(RawWindow(
            title=title,
            owner_app=owner,
            url=url,
            window_index=window_index,
            tab_index=tab_index,
            kind=kind
        ))

    if skipped:
        logger.debug(f"Skipped {skipped} malformed discovery records")
    return windows


_JXA_CLEAN = r'''
function clean(value) {
  return String(value || "").replace(/[\r\n]+/g, " ").split("|||").join("|");
}
'''

_WINDOW_ENUMERATION = _JXA_CLEAN + r'''
const se = Application("System Events");
const procs = se.applicationProcesses.whose({ backgroundOnly: false })();
const out = [];
for (let i = 0; i < procs.length; i++) {
  let appName = "";
  try { appName = procs[i].name(); } catch (e) { continue; }
  let wins = [];
  try { wins = procs[i].windows(); } catch (e) { wins = []; }
  for (let j = 0; j < wins.length; j++) {
    let title = "";
    try { title = wins[j].name() || ""; } catch (e) { title = ""; }
    if (title) {
      out.push([clean(title), "", j + 1, 1, clean(appName)].join("|||"));
    }
  }
}
out.join("\n");
'''

_CHROMIUM_TABS = Template(_JXA_CLEAN + r'''
const app = Application("$app");
const out = [];
if (app.running()) {
  const wins = app.windows();
  for (let i = 0; i < wins.length; i++) {
    const tabs = wins[i].tabs();
    for (let j = 0; j < tabs.length; j++) {
      out.push([clean(tabs[j].title()), clean(tabs[j].url()), i + 1, j + 1, "$app"].join("|||"));
    }
  }
}
out.join("\n");
''')

_SAFARI_TABS = Template(_JXA_CLEAN + r'''
const app = Application("$app");
const out = [];
if (app.running()) {
  const wins = app.windows();
  for (let i = 0; i < wins.length; i++) {
    let tabs = [];
    try { tabs = wins[i].tabs(); } catch (e) { tabs = []; }
    for (let j = 0; j < tabs.length; j++) {
      out.push([clean(tabs[j].name()), clean(tabs[j].url()), i + 1, j + 1, "$app"].join("|||"));
    }
  }
}
out.join("\n");
''')

_TERMINAL_TABS = Template(_JXA_CLEAN + r'''
const app = Application("$app");
const out = [];
if (app.running()) {
  const wins = app.windows();
  for (let i = 0; i < wins.length; i++) {
    const tabs = wins[i].tabs();
    for (let j = 0; j < tabs.length; j++) {
      let title = "";
      try { title = tabs[j].customTitle() || wins[i].name(); } catch (e) { title = wins[i].name(); }
      out.push([clean(title), "", i + 1, j + 1, "$app"].join("|||"));
    }
  }
}
out.join("\n");
''')

# App name -> tab script dialect
DEDICATED_TAB_APPS = {
    'Safari': _SAFARI_TABS,
    'Google Chrome': _CHROMIUM_TABS,
    'Brave Browser': _CHROMIUM_TABS,
    'Arc': _CHROMIUM_TABS,
    'Comet': _CHROMIUM_TABS,
    'Terminal': _TERMINAL_TABS,
}


def window_enumeration_script() -> str:
    return _WINDOW_ENUMERATION


def tab_script_for(app_name: str) -> Optional[str]:
    """Tab listing script for an app with a dedicated dialect, else None."""
    template = DEDICATED_TAB_APPS.get(app_name)
    if template is None:
        return None
    return template.substitute(app=escape_script_string(app_name))
