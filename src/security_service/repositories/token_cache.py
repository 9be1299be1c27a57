from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from security_service.auth.jwt import TokenCodec, VerifiedToken
from security_service.configs.logging_config import get_logger
from security_service.errors import AuthError
from security_service.utils.time_utils import epoch_seconds

log = get_logger(__name__)

ACCESS_PREFIX = "accessToken:"
REFRESH_PREFIX = "refreshToken:"


class InsertResult(str, Enum):
    INSERTED = "inserted"
    SKIPPED_INVALID = "skipped_invalid"
    SKIPPED_EXPIRED = "skipped_expired"
    SKIPPED_UNAVAILABLE = "skipped_unavailable"
    SKIPPED_REVOKED = "skipped_revoked"

    @property
    def inserted(self) -> bool:
        return self is InsertResult.INSERTED


@dataclass(frozen=True)
class PairInsertResult:
    access: InsertResult
    refresh: InsertResult

    @property
    def paired(self) -> bool:
        return self.access.inserted and self.refresh.inserted


@dataclass(frozen=True)
class CacheEntry:
    application_id: str
    account_id: str
    paired_token: str | None = None


@dataclass
class _Pending:
    key: str
    verified: VerifiedToken
    ttl: int | None
    result: InsertResult


class RevocationCache:
    """
    Redis ledger of outstanding tokens.

    Each token is a hash keyed by the token string holding the issuing
    application, the account and the paired token (if the pair was inserted
    together). Entries expire with the token's own `exp`; a token missing from
    the cache is not live regardless of its signature.
    """

    def __init__(self, client: redis.Redis, codec: TokenCodec, prefix: str = "aeg-security:"):
        self._redis = client
        self._codec = codec
        self._prefix = prefix

    def _access_key(self, token: str) -> str:
        return f"{self._prefix}{ACCESS_PREFIX}{token}"

    def _refresh_key(self, token: str) -> str:
        return f"{self._prefix}{REFRESH_PREFIX}{token}"

    # ----------------------------
    # Inserts
    # ----------------------------

    def _verify(self, token: str | None, signing_key: str) -> VerifiedToken | None:
        if not token:
            return None
        try:
            return self._codec.verify(token, signing_key)
        except AuthError:
            # the token is invalid, we just wont add it
            return None

    @staticmethod
    def _ttl_from_exp(verified: VerifiedToken) -> int | None:
        if verified.exp is None:
            return None
        return math.ceil(verified.exp - epoch_seconds())

    def _prepare(self, key: str, verified: VerifiedToken | None, ttl: int | None) -> _Pending | None:
        if verified is None:
            return None
        pending = _Pending(key=key, verified=verified, ttl=ttl, result=InsertResult.INSERTED)
        if ttl is not None and ttl <= 0:
            pending.result = InsertResult.SKIPPED_EXPIRED
        return pending

    @staticmethod
    def _entry_fields(verified: VerifiedToken) -> dict[str, str]:
        return {
            "application": str(verified.kid or verified.claims.get("iss") or ""),
            "account": str(verified.claims.get("account") or ""),
        }

    def _refresh_ttl(self, verified: VerifiedToken, remaining: int, fallback: int | None) -> int | None:
        ttl = self._ttl_from_exp(verified)
        if ttl is not None:
            return ttl
        # no exp on the token: keep the session length of an existing entry
        if remaining == -1:
            return None
        if remaining > 0:
            return remaining
        return fallback

    @staticmethod
    def _pair_writes(
        access: _Pending | None,
        refresh: _Pending | None,
        access_token: str,
        refresh_token: str,
    ) -> list[tuple[_Pending, dict[str, str]]]:
        access_ok = access is not None and access.result.inserted
        refresh_ok = refresh is not None and refresh.result.inserted

        writes: list[tuple[_Pending, dict[str, str]]] = []
        if access_ok:
            fields = RevocationCache._entry_fields(access.verified)
            if refresh_ok:
                fields["refreshToken"] = refresh_token
            writes.append((access, fields))
        if refresh_ok:
            fields = RevocationCache._entry_fields(refresh.verified)
            if access_ok:
                fields["accessToken"] = access_token
            writes.append((refresh, fields))
        return writes

    async def put_pair(
        self,
        signing_key: str,
        access_token: str,
        refresh_token: str,
        refresh_ttl: int | None = None,
        reinsert: bool = False,
    ) -> PairInsertResult:
        """Insert an access/refresh pair.

        Each token is verified independently; one failing does not stop the
        other from being inserted, but a pairing link is only written when
        both made it. Both writes go through one MULTI/EXEC.

        With `reinsert`, the refresh token must still be cached: the refresh
        key is WATCHed, and if it is gone (or removed before EXEC) nothing is
        written and both results are SKIPPED_REVOKED.
        """
        access_key = self._access_key(access_token)
        refresh_key = self._refresh_key(refresh_token)

        access_verified = self._verify(access_token, signing_key)
        refresh_verified = self._verify(refresh_token, signing_key)

        access = self._prepare(
            access_key,
            access_verified,
            self._ttl_from_exp(access_verified) if access_verified else None,
        )
        refresh = None
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                if refresh_verified is not None:
                    if reinsert:
                        # immediate mode until multi(); EXEC fails if the key changes
                        await pipe.watch(refresh_key)
                        remaining = await pipe.ttl(refresh_key)
                        if remaining == -2:
                            return self._revoked_pair()
                    else:
                        remaining = await self._redis.ttl(refresh_key)
                    refresh = self._prepare(
                        refresh_key,
                        refresh_verified,
                        self._refresh_ttl(refresh_verified, remaining, refresh_ttl),
                    )

                writes = self._pair_writes(access, refresh, access_token, refresh_token)
                if writes:
                    pipe.multi()
                    self._queue(pipe, writes)
                    await pipe.execute()
        except WatchError:
            return self._revoked_pair()
        except RedisError as e:
            log.warning("cache.put_pair write_failed error=%s", str(e))
            for pending in (access, refresh):
                if pending is not None and pending.result.inserted:
                    pending.result = InsertResult.SKIPPED_UNAVAILABLE

        result = PairInsertResult(
            access=access.result if access else InsertResult.SKIPPED_INVALID,
            refresh=refresh.result if refresh else InsertResult.SKIPPED_INVALID,
        )
        log.info(
            "cache.put_pair access=%s refresh=%s",
            result.access.value,
            result.refresh.value,
        )
        return result

    @staticmethod
    def _revoked_pair() -> PairInsertResult:
        log.info("cache.put_pair refresh_gone result=%s", InsertResult.SKIPPED_REVOKED.value)
        return PairInsertResult(access=InsertResult.SKIPPED_REVOKED, refresh=InsertResult.SKIPPED_REVOKED)

    async def put_access_only(self, signing_key: str, access_token: str) -> InsertResult:
        verified = self._verify(access_token, signing_key)
        pending = self._prepare(
            self._access_key(access_token),
            verified,
            self._ttl_from_exp(verified) if verified else None,
        )
        if pending is None:
            log.info("cache.put_access result=%s", InsertResult.SKIPPED_INVALID.value)
            return InsertResult.SKIPPED_INVALID
        if pending.result.inserted:
            await self._write([(pending, self._entry_fields(pending.verified))])
        log.info("cache.put_access result=%s", pending.result.value)
        return pending.result

    @staticmethod
    def _queue(pipe, writes: list[tuple[_Pending, dict[str, str]]]) -> None:
        for pending, fields in writes:
            # drop any stale pairing field from a previous insert
            pipe.delete(pending.key)
            pipe.hset(pending.key, mapping=fields)
            if pending.ttl is not None:
                pipe.expire(pending.key, pending.ttl)

    async def _write(self, writes: list[tuple[_Pending, dict[str, str]]]) -> None:
        if not writes:
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                self._queue(pipe, writes)
                await pipe.execute()
        except RedisError as e:
            log.warning("cache.write_failed keys=%s error=%s", len(writes), str(e))
            for pending, _ in writes:
                pending.result = InsertResult.SKIPPED_UNAVAILABLE

    # ----------------------------
    # Lookups / deletes
    # ----------------------------

    async def lookup_access(self, token: str) -> CacheEntry | None:
        data = await self._redis.hgetall(self._access_key(token))
        if not data:
            return None
        return CacheEntry(
            application_id=data.get("application", ""),
            account_id=data.get("account", ""),
            paired_token=data.get("refreshToken") or None,
        )

    async def lookup_refresh(self, token: str) -> CacheEntry | None:
        data = await self._redis.hgetall(self._refresh_key(token))
        if not data:
            return None
        return CacheEntry(
            application_id=data.get("application", ""),
            account_id=data.get("account", ""),
            paired_token=data.get("accessToken") or None,
        )

    async def delete_access(self, token: str) -> None:
        await self._redis.delete(self._access_key(token))

    async def delete_refresh(self, token: str) -> None:
        await self._redis.delete(self._refresh_key(token))

    async def revoke_access(self, token: str) -> bool:
        """Delete an access entry and cascade to its paired refresh entry.

        Returns False when the token was not cached. Refresh entries never
        cascade back to their access token.
        """
        entry = await self.lookup_access(token)
        if entry is None:
            log.info("cache.revoke not_cached")
            return False

        await self.delete_access(token)
        if entry.paired_token:
            await self.delete_refresh(entry.paired_token)
        log.info(
            "cache.revoke app=%s account=%s cascaded=%s",
            entry.application_id,
            entry.account_id,
            bool(entry.paired_token),
        )
        return True

    async def is_live(self, access_token: str) -> bool:
        return await self.lookup_access(access_token) is not None
