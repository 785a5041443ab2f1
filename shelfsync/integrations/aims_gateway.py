"""
AIMS integration gateway for ShelfSync
Outbound client for the label-management cloud: authentication, article push and delete
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from shelfsync.core.exceptions import AimsConfigurationError, AimsRequestError
from shelfsync.core.repositories import StoreRepository

T = TypeVar('T')

TOKEN_PATH = '/common/api/v2/token'
ARTICLES_PATH = '/common/api/v2/common/articles'


@dataclass
class AimsConfig:
    """AIMS connection settings"""
    base_url: str = ""
    cluster: str = ""
    username: str = ""
    password: str = ""
    company_code: str = ""
    timeout_seconds: float = 30
    verify_tls: bool = True
    batch_size: int = 500
    token_expiry_buffer_seconds: int = 300
    login_max_retries: int = 3
    login_base_delay_ms: int = 1000

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'AimsConfig':
        section = config.get('aims', {})
        defaults = cls()
        return cls(
            base_url=(section.get('base_url') or '').rstrip('/'),
            cluster=section.get('cluster') or '',
            username=section.get('username') or '',
            password=section.get('password') or '',
            company_code=section.get('company_code') or '',
            timeout_seconds=float(section.get('timeout_seconds', defaults.timeout_seconds)),
            verify_tls=bool(section.get('verify_tls', defaults.verify_tls)),
            batch_size=int(section.get('batch_size', defaults.batch_size)),
            token_expiry_buffer_seconds=int(
                section.get('token_expiry_buffer_seconds', defaults.token_expiry_buffer_seconds)),
            login_max_retries=int(section.get('login_max_retries', defaults.login_max_retries)),
            login_base_delay_ms=int(section.get('login_base_delay_ms', defaults.login_base_delay_ms)),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.base_url and self.username and self.password)


@dataclass
class AimsToken:
    access_token: str
    expires_at: float  # time.monotonic() deadline


class AimsGateway:
    """Authenticated article operations against AIMS"""

    def __init__(self, config: AimsConfig, store_repository: StoreRepository,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.store_repository = store_repository
        self.logger = logging.getLogger(__name__)

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[AimsToken] = None
        self._login_lock = asyncio.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                verify=self.config.verify_tls,
                headers={"Content-Type": "application/json"},
                transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _build_url(self, path: str) -> str:
        """Cluster-aware URL"""
        cluster_prefix = '/c1' if self.config.cluster == 'c1' else ''
        return f"{self.config.base_url}{cluster_prefix}{path}"

    # Authentication

    async def get_token(self) -> str:
        """Cached access token; concurrent callers share a single login"""
        if self._token_valid():
            return self._token.access_token

        async with self._login_lock:
            if self._token_valid():
                return self._token.access_token
            self._token = await self._login_with_retry()
            return self._token.access_token

    def _token_valid(self) -> bool:
        return (self._token is not None
                and self._token.expires_at > time.monotonic() + self.config.token_expiry_buffer_seconds)

    def invalidate_token(self):
        self._token = None

    async def _login_with_retry(self) -> AimsToken:
        attempt = 0
        while True:
            try:
                return await self._login()
            except AimsRequestError as e:
                if attempt >= self.config.login_max_retries or not e.is_retryable:
                    raise
                delay = self.config.login_base_delay_ms * (2 ** attempt) * (0.8 + random.random() * 0.4) / 1000
                attempt += 1
                self.logger.warning(
                    f"AIMS login failed (attempt {attempt}/{self.config.login_max_retries + 1}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _login(self) -> AimsToken:
        if not self.config.has_credentials:
            raise AimsConfigurationError("No AIMS credentials configured")

        response = await self._send(
            'POST', self._build_url(TOKEN_PATH),
            json={'username': self.config.username, 'password': self.config.password},
            operation='login'
        )
        try:
            token_data = response.json()['responseMessage']
            access_token = token_data['access_token']
            expires_in = float(token_data.get('expires_in', 0))
        except (ValueError, KeyError, TypeError) as e:
            raise AimsRequestError(f"AIMS login returned an unexpected body: {e}", response.status_code)

        self.logger.info("AIMS login succeeded")
        return AimsToken(access_token=access_token, expires_at=time.monotonic() + expires_in)

    # Article operations

    async def push_articles(self, store_id: str, articles: List[Dict[str, Any]]):
        """Create or update articles, split into AIMS-sized batches"""
        if not articles:
            return

        url = await self._articles_url(store_id)
        batch_size = max(1, self.config.batch_size)
        batches = [articles[i:i + batch_size] for i in range(0, len(articles), batch_size)]
        if len(batches) > 1:
            self.logger.info(f"Pushing {len(articles)} articles in {len(batches)} batches of up to {batch_size}")

        for batch in batches:
            await self._with_auth_retry(
                lambda token, batch=batch: self._send(
                    'POST', url, json=batch, token=token, operation='Push articles'
                )
            )

    async def delete_articles(self, store_id: str, article_ids: List[str]):
        if not article_ids:
            return

        url = await self._articles_url(store_id)
        await self._with_auth_retry(
            lambda token: self._send(
                'DELETE', url, json={'articleDeleteList': list(article_ids)}, token=token,
                operation='Delete articles'
            )
        )

    async def check_health(self) -> bool:
        """True when a token can be obtained"""
        try:
            await self.get_token()
            return True
        except (AimsConfigurationError, AimsRequestError) as e:
            self.logger.warning(f"AIMS health check failed: {e}")
            return False

    async def _articles_url(self, store_id: str) -> str:
        store = await self.store_repository.get_store(store_id)
        if not store:
            raise AimsConfigurationError(f"No AIMS configuration for store {store_id}")

        company_code = store.company_code or self.config.company_code
        if not company_code:
            raise AimsConfigurationError(f"No AIMS company code for store {store_id}")

        query = httpx.QueryParams({'company': company_code, 'store': store.code})
        return f"{self._build_url(ARTICLES_PATH)}?{query}"

    async def _with_auth_retry(self, request: Callable[[str], Awaitable[T]]) -> T:
        """Run a request, refreshing the token once on 401/403"""
        token = await self.get_token()
        try:
            return await request(token)
        except AimsRequestError as e:
            if not e.is_auth_error:
                raise
            self.logger.info("AIMS rejected token, re-authenticating")
            self.invalidate_token()
            return await request(await self.get_token())

    async def _send(self, method: str, url: str, json: Any = None, token: Optional[str] = None,
                    operation: str = 'AIMS request') -> httpx.Response:
        headers = {'Authorization': f'Bearer {token}'} if token else None
        try:
            response = await self._get_client().request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise AimsRequestError(f"{operation} failed: {e}")

        if response.is_success:
            return response
        raise AimsRequestError(
            f"{operation} failed: {response.status_code} - {response.text[:500]}",
            response.status_code
        )
