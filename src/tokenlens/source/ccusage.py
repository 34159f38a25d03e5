import asyncio
import json
import shlex

import structlog

from tokenlens.errors import SourceError

logger = structlog.get_logger()

# report name -> ccusage sub-command arguments
REPORTS: "dict[str, tuple[str, ...]]" = {
    "daily-instances": ("daily", "--instances"),
    "daily": ("daily",),
    "session": ("session",),
    "blocks": ("blocks",),
}


class CCUsageSource:
    """
    CCUsageSource implements the UsageSource protocol on top of the
    ccusage CLI. Every report is a separate `ccusage <report> --json`
    process; when the binary is not on PATH the source falls back to
    running it through npx.
    """

    def __init__(self, command: "str" = "ccusage", timeout: "float" = 30.0) -> "None":
        self._command: "list[str]" = shlex.split(command)
        self._timeout = timeout
        self._procs: "set[asyncio.subprocess.Process]" = set()

    @property
    def name(self) -> "str":
        return "ccusage"

    @property
    def command(self) -> "list[str]":
        return list(self._command)

    async def available(self) -> "bool":
        """
        checks whether ccusage can be run, switching to `npx ccusage`
        when the configured command is missing.
        """
        candidates = [self._command]
        if self._command[0] != "npx":
            candidates.append(["npx", *self._command])

        for candidate in candidates:
            try:
                version = await self._run([*candidate, "--version"])
            except SourceError as e:
                logger.debug("ccusage_check_failed", command=candidate, error=str(e))
                continue

            self._command = candidate
            logger.info("ccusage_available", command=candidate, version=version.strip())
            return True

        logger.warning("ccusage_unavailable", command=self._command)
        return False

    async def fetch(self, report: "str") -> "object":
        """
        runs one ccusage report and returns its parsed JSON output.
        """
        try:
            args = REPORTS[report]
        except KeyError:
            raise SourceError(f"unknown report: {report}") from None

        stdout = await self._run([*self._command, *args, "--json"])
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise SourceError(f"ccusage {report} returned invalid JSON: {e}") from e

    async def close(self) -> "None":
        """
        kills any report process that is still running.
        """
        for proc in list(self._procs):
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        self._procs.clear()

    async def _run(self, argv: "list[str]") -> "str":
        logger.debug("ccusage_exec", argv=argv)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SourceError(f"cannot execute {argv[0]}: {e}") from e

        self._procs.add(proc)
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SourceError(
                f"{shlex.join(argv)} timed out after {self._timeout}s"
            ) from None
        finally:
            self._procs.discard(proc)

        if proc.returncode != 0:
            raise SourceError(
                f"{shlex.join(argv)} exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode()
