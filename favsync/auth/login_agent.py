"""Out-of-process login agent that re-establishes a session."""
import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Optional, Sequence

from favsync.auth.vault import CredentialVault
from favsync.config import config
from favsync.parse.models import Credential
from favsync.parse.redact import redact_string

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    success: bool
    exit_code: Optional[int] = None
    output: str = ""
    timed_out: bool = False


class ExternalLoginAgent:
    """Runs the configured login command with the credential's email and password.

    The agent writes fresh session tokens into the shared state database; this
    class only reports whether it exited cleanly. One login runs at a time.
    """

    def __init__(
        self,
        command: Optional[Sequence[str] | str] = None,
        timeout: Optional[float] = None,
        vault: Optional[CredentialVault] = None,
    ):
        command = config.LOGIN_AGENT_COMMAND if command is None else command
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = config.LOGIN_AGENT_TIMEOUT if timeout is None else timeout
        self.vault = vault
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def login(self, credential: Credential) -> LoginResult:
        if self._lock.locked():
            logger.warning("Login agent already running, skipping")
            return LoginResult(success=False, output="login already in progress")

        async with self._lock:
            result = await self._run(credential)

        if result.success:
            logger.info(f"Login agent succeeded for {credential.email}")
            if self.vault is not None and credential.id is not None:
                await self.vault.mark_refreshed(credential.id)
        elif result.timed_out:
            logger.error(f"Login agent timed out after {self.timeout}s")
        else:
            logger.error(f"Login agent failed (exit code {result.exit_code})")
        return result

    async def _run(self, credential: Credential) -> LoginResult:
        args = [*self.command, "--email", credential.email, "--password", credential.secret]
        logger.info(f"Starting login agent: {redact_string(shlex.join(args))}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"Login agent could not be started: {e}")
            return LoginResult(success=False, output=str(e))

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return LoginResult(success=False, exit_code=process.returncode, timed_out=True)

        output = redact_string(stdout.decode("utf-8", errors="replace"))
        for line in output.splitlines():
            if line.strip():
                logger.debug(f"[login-agent] {line}")

        return LoginResult(
            success=process.returncode == 0,
            exit_code=process.returncode,
            output=output,
        )
