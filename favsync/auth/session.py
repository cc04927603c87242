"""Session management with token refresh and login-agent escalation."""
import asyncio
import logging
from typing import Optional

from favsync.auth.login_agent import ExternalLoginAgent
from favsync.auth.session_store import SessionStore
from favsync.auth.tokens import TokenLifecycleManager
from favsync.auth.vault import CredentialVault
from favsync.config import config
from favsync.errors import ConfigurationError, NoValidAuthenticationError

logger = logging.getLogger(__name__)


class SessionManager:
    """Keeps a usable session, recovering from auth failures one attempt at a time."""

    def __init__(
        self,
        store: SessionStore,
        vault: CredentialVault,
        tokens: TokenLifecycleManager,
        agent: ExternalLoginAgent,
        auto_login: Optional[bool] = None,
    ):
        self.store = store
        self.vault = vault
        self.tokens = tokens
        self.agent = agent
        self.auto_login = config.AUTO_LOGIN if auto_login is None else auto_login
        self._recovery_task: Optional[asyncio.Task] = None

    @property
    def recovery_in_progress(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    async def ensure_session(self) -> None:
        """Proceed with the stored session, or log in through the agent.

        Raises NoValidAuthenticationError when neither works.
        """
        if await self.store.has_valid_session():
            logger.debug("Stored session is valid")
            return

        credential = await self.vault.get_active()
        if credential is None:
            raise NoValidAuthenticationError(
                "No valid session and no credentials configured"
            )
        if not self.auto_login:
            raise NoValidAuthenticationError(
                "No valid session and automatic login is disabled"
            )

        logger.warning("No valid session, running login agent...")
        if not await self.force_login():
            raise NoValidAuthenticationError("Login agent did not produce a session")
        if not await self.store.has_valid_session():
            raise NoValidAuthenticationError("Login agent finished but no session was stored")

    async def resolve_user_id(self) -> str:
        if config.USER_ID:
            return config.USER_ID
        credential = await self.vault.get_active()
        if credential is not None and credential.user_id:
            return credential.user_id
        raise ConfigurationError("USER_ID is not set and the active credential has no user id")

    async def force_login(self) -> bool:
        """Run the login agent, after letting any in-flight recovery finish."""
        if self.recovery_in_progress:
            await asyncio.shield(self._recovery_task)
        return await self._login()

    async def _login(self) -> bool:
        credential = await self.vault.get_active()
        if credential is None:
            logger.error("Cannot log in: no credentials stored")
            return False
        result = await self.agent.login(credential)
        return result.success

    def schedule_recovery(self) -> Optional[asyncio.Task]:
        """Start a background recovery unless one is already running."""
        if self.recovery_in_progress:
            logger.debug("Auth recovery already in progress")
            return self._recovery_task
        logger.info("Scheduling auth recovery")
        self._recovery_task = asyncio.create_task(self._recover())
        return self._recovery_task

    async def await_recovery(self) -> bool:
        """Wait for the shared recovery task, starting it if needed."""
        task = self.schedule_recovery()
        return await asyncio.shield(task)

    async def _recover(self) -> bool:
        try:
            return await self._refresh_then_login()
        except Exception as e:
            logger.error(f"Auth recovery failed: {e}")
            return False

    async def _refresh_then_login(self) -> bool:
        if await self.tokens.refresh():
            logger.info("Auth recovered by token refresh")
            return True

        if not self.auto_login or not await self.vault.has_credentials():
            logger.warning("Token refresh failed and no login escalation available")
            return False

        logger.warning("Token refresh failed, escalating to login agent")
        return await self._login()
