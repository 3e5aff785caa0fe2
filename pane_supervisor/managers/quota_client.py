"""プロバイダー使用量の照会クライアント。

caut CLI（`caut usage --format json`）を呼び出してプロバイダーごとの
使用率を取得する。照会はベストエフォートで、失敗しても呼び出し側の
状態判定は継続できる。
"""

import asyncio
import logging
import shutil
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import ValidationError

from pane_supervisor.config.agent_registry import known_profiles, provider_for_agent
from pane_supervisor.models.quota import ProviderPayload, UsageResponse

logger = logging.getLogger(__name__)


class QuotaUnavailableError(RuntimeError):
    """使用量を取得できなかったことを示す例外。"""


class QuotaClient:
    """caut CLI を呼び出す使用量クライアント。"""

    def __init__(self, binary: str = "caut", timeout_seconds: float = 10.0) -> None:
        """QuotaClientを初期化する。

        Args:
            binary: caut の実行ファイル名またはパス
            timeout_seconds: 1 回の照会のタイムアウト（秒）
        """
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    def is_installed(self) -> bool:
        """caut が利用可能か確認する。"""
        return shutil.which(self.binary) is not None

    async def _run(self, *args: str) -> tuple[int, str, str]:
        """caut を実行する。

        Raises:
            QuotaUnavailableError: 実行できない、またはタイムアウトした場合
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise QuotaUnavailableError(f"{self.binary} がインストールされていません") from e
        except OSError as e:
            raise QuotaUnavailableError(f"{self.binary} の実行に失敗しました: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise QuotaUnavailableError(
                f"{self.binary} が {self.timeout_seconds} 秒以内に応答しませんでした"
            ) from e
        return proc.returncode or 0, stdout.decode(), stderr.decode()

    async def fetch_usage(self, providers: list[str]) -> UsageResponse:
        """指定プロバイダーの使用量を取得する。

        Args:
            providers: プロバイダー名のリスト（空の場合は全プロバイダー）

        Returns:
            caut の応答

        Raises:
            QuotaUnavailableError: 取得・解析に失敗した場合
        """
        args = ["usage", "--format", "json"]
        for provider in providers:
            args.extend(["--provider", provider])

        code, stdout, stderr = await self._run(*args)
        if code != 0:
            raise QuotaUnavailableError(f"caut usage が失敗しました: {stderr.strip()}")

        try:
            response = UsageResponse.model_validate_json(stdout)
        except ValidationError as e:
            raise QuotaUnavailableError(f"caut の応答を解析できません: {e}") from e

        if response.errors:
            logger.warning(f"caut が警告を返しました: {response.errors}")
        return response

    async def get_provider_usage(self, provider: str) -> ProviderPayload | None:
        """1 プロバイダーの使用量を取得する。"""
        response = await self.fetch_usage([provider])
        return response.payload_for(provider)

    async def get_agent_usage(self, agent_type: str) -> ProviderPayload | None:
        """エージェント種別に対応するプロバイダーの使用量を取得する。

        プロバイダーを持たない種別（unknown）は None を返す。
        """
        provider = provider_for_agent(agent_type)
        if provider is None:
            return None
        return await self.get_provider_usage(provider)

    async def fetch_all_supported(self) -> UsageResponse:
        """対応している全プロバイダーの使用量を取得する。"""
        providers = [p.provider.value for p in known_profiles() if p.provider]
        return await self.fetch_usage(providers)


class CachedQuotaClient:
    """プロバイダー単位で結果をキャッシュする使用量クライアント。"""

    def __init__(
        self,
        client: QuotaClient,
        ttl_seconds: float = 300.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """CachedQuotaClientを初期化する。

        Args:
            client: 実際に照会するクライアント
            ttl_seconds: キャッシュ保持期間（秒）
            clock: 現在時刻を返す関数
        """
        self.client = client
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._cache: dict[str, tuple[ProviderPayload | None, datetime]] = {}
        self._lock = asyncio.Lock()

    def is_installed(self) -> bool:
        """caut が利用可能か確認する。"""
        return self.client.is_installed()

    async def get_provider_usage(self, provider: str) -> ProviderPayload | None:
        """キャッシュを考慮して 1 プロバイダーの使用量を取得する。"""
        async with self._lock:
            cached = self._cache.get(provider)
            now = self._clock()
            if cached is not None and now - cached[1] < self.ttl:
                return cached[0]

            payload = await self.client.get_provider_usage(provider)
            self._cache[provider] = (payload, now)
            return payload

    async def get_agent_usage(self, agent_type: str) -> ProviderPayload | None:
        """エージェント種別に対応するプロバイダーの使用量を取得する。"""
        provider = provider_for_agent(agent_type)
        if provider is None:
            return None
        return await self.get_provider_usage(provider)

    def invalidate(self, provider: str) -> None:
        """指定プロバイダーのキャッシュを破棄する。"""
        self._cache.pop(provider, None)

    def invalidate_all(self) -> None:
        """全キャッシュを破棄する。"""
        self._cache.clear()

    def cache_stats(self) -> dict:
        """キャッシュの状態を返す。"""
        now = self._clock()
        return {
            "entries": len(self._cache),
            "ttl_seconds": self.ttl.total_seconds(),
            "providers": {
                provider: {"age_seconds": (now - fetched_at).total_seconds()}
                for provider, (_, fetched_at) in self._cache.items()
            },
        }
