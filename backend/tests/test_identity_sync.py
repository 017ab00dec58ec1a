"""Tests for identity provider lifecycle sync."""

import base64
import json
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from svix.webhooks import Webhook

from app.models.account import Account
from app.models.balance_snapshot import BalanceSnapshot
from app.models.credit_transaction import CreditTransaction
from app.services.errors import SignatureVerificationError, UpstreamError, ValidationError
from app.services.identity_sync import (
    ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    IdentitySync,
    load_webhook,
    verify_identity_signature,
)
from app.services.idempotency import marker_key

SECRET = "whsec_" + base64.b64encode(b"identity-signing-key").decode("ascii")
SIGNER = Webhook(SECRET)


def event(event_type: str, user_id: str = "user_2abc", **data) -> bytes:
    body = {"id": user_id, **data}
    if event_type != "user.deleted":
        body.setdefault("email_addresses", [{"email_address": f"{user_id}@example.com"}])
        body.setdefault("username", user_id)
    return json.dumps({"type": event_type, "data": body}).encode("utf-8")


def signed_headers(payload: bytes, msg_id: str = "msg_1", timestamp: int | None = None) -> dict:
    ts = int(time.time()) if timestamp is None else timestamp
    return {
        ID_HEADER: msg_id,
        TIMESTAMP_HEADER: str(ts),
        SIGNATURE_HEADER: SIGNER.sign(
            msg_id, datetime.fromtimestamp(ts, tz=timezone.utc), payload.decode("utf-8")
        ),
    }


@pytest.fixture
def sync(db_session, fake_redis) -> IdentitySync:
    return IdentitySync(db_session, fake_redis)


async def handle(sync: IdentitySync, payload: bytes, msg_id: str = "msg_1"):
    return await sync.handle_webhook(payload, signed_headers(payload, msg_id), secret=SECRET)


async def load_account(session_factory, account_id: str):
    async with session_factory() as session:
        return await session.get(Account, account_id)


# ============================================================================
# Signature Verification Tests
# ============================================================================


class TestVerifySignature:
    def test_valid_signature_returns_message_id(self):
        payload = event("user.created")
        headers = signed_headers(payload, "msg_9")
        assert verify_identity_signature(payload, headers, SECRET) == "msg_9"

    def test_any_listed_signature_may_match(self):
        payload = event("user.created")
        headers = signed_headers(payload)
        headers[SIGNATURE_HEADER] = f"v1,bm90LWl0 {headers[SIGNATURE_HEADER]}"
        assert verify_identity_signature(payload, headers, SECRET) == "msg_1"

    def test_tampered_payload(self):
        headers = signed_headers(event("user.created"))
        with pytest.raises(SignatureVerificationError, match="Invalid"):
            verify_identity_signature(event("user.deleted"), headers, SECRET)

    def test_stale_timestamp(self):
        payload = event("user.created")
        headers = signed_headers(payload, timestamp=int(time.time()) - 600)
        with pytest.raises(SignatureVerificationError, match="too old"):
            verify_identity_signature(payload, headers, SECRET)

    def test_timestamp_within_tolerance(self):
        payload = event("user.created")
        headers = signed_headers(payload, timestamp=int(time.time()) - 240)
        assert verify_identity_signature(payload, headers, SECRET) == "msg_1"

    def test_header_names_are_case_insensitive(self):
        payload = event("user.created")
        headers = {k.upper(): v for k, v in signed_headers(payload).items()}
        assert verify_identity_signature(payload, headers, SECRET) == "msg_1"

    def test_unparseable_signature_list(self):
        payload = event("user.created")
        headers = signed_headers(payload)
        headers[SIGNATURE_HEADER] = "garbage"
        with pytest.raises(SignatureVerificationError, match="Invalid"):
            verify_identity_signature(payload, headers, SECRET)

    def test_missing_headers(self):
        with pytest.raises(SignatureVerificationError, match="Missing"):
            verify_identity_signature(b"{}", {ID_HEADER: "msg_1"}, SECRET)

    def test_unconfigured_secret(self):
        with pytest.raises(SignatureVerificationError, match="not configured"):
            verify_identity_signature(b"{}", {}, "")

    @pytest.mark.parametrize("secret", ["whsec_not*base64!", "whsec_abc", "whsec_"])
    def test_malformed_secret_rejected(self, secret):
        with pytest.raises(SignatureVerificationError, match="Malformed"):
            load_webhook(secret)


# ============================================================================
# Lifecycle Event Tests
# ============================================================================


class TestUserCreated:
    async def test_opens_account_with_welcome_grant(self, sync, session_factory):
        result = await handle(sync, event("user.created", image_url="https://img/a.png"))

        assert result.status == "processed"
        assert result.account_id == "user_2abc"

        account = await load_account(session_factory, "user_2abc")
        assert account.credits_balance == 100
        assert account.email == "user_2abc@example.com"
        assert account.avatar_url == "https://img/a.png"

        async with session_factory() as session:
            grant = await session.scalar(
                select(CreditTransaction).where(CreditTransaction.account_id == "user_2abc")
            )
            snapshot = await session.scalar(
                select(BalanceSnapshot).where(BalanceSnapshot.account_id == "user_2abc")
            )
        assert grant.credits_delta == 100
        assert grant.idempotency_key == "welcome:user_2abc"
        assert snapshot.reason == "welcome_grant"
        assert (snapshot.balance_before, snapshot.balance_after) == (0, 100)

    async def test_duplicate_delivery_is_acknowledged(self, sync, session_factory):
        payload = event("user.created")

        await handle(sync, payload, "msg_1")
        second = await handle(sync, payload, "msg_1")

        assert second.status == "duplicate"
        account = await load_account(session_factory, "user_2abc")
        assert account.credits_balance == 100

    async def test_replayed_event_does_not_grant_twice(self, sync, fake_redis, session_factory):
        payload = event("user.created")
        await handle(sync, payload, "msg_1")

        # Same event under a new message id, handled by a separate request
        async with session_factory() as session:
            replay = await handle(IdentitySync(session, fake_redis), payload, "msg_2")

        assert replay.status == "processed"
        account = await load_account(session_factory, "user_2abc")
        assert account.credits_balance == 100

    async def test_generated_username(self, sync, session_factory):
        payload = json.dumps(
            {
                "type": "user.created",
                "data": {
                    "id": "user_2xyz98765",
                    "email_addresses": [{"email_address": "x@example.com"}],
                },
            }
        ).encode("utf-8")

        await handle(sync, payload)

        account = await load_account(session_factory, "user_2xyz98765")
        assert account.username == "user_user_2xy"

    async def test_missing_email_releases_claim(self, sync, fake_redis):
        payload = event("user.created", email_addresses=[])

        with pytest.raises(ValidationError):
            await handle(sync, payload, "msg_1")

        assert marker_key("identity", "msg_1") not in fake_redis.values


class TestUserUpdatedAndDeleted:
    async def test_updates_profile(self, sync, make_account, session_factory):
        await make_account("user_2abc", balance=40)

        result = await handle(
            sync,
            event(
                "user.updated",
                email_addresses=[{"email_address": "new@example.com"}],
                username="renamed",
            ),
        )

        assert result.status == "processed"
        account = await load_account(session_factory, "user_2abc")
        assert account.email == "new@example.com"
        assert account.username == "renamed"
        assert account.credits_balance == 40

    async def test_delete_removes_account(self, sync, make_account, session_factory):
        await make_account("user_2abc")

        result = await handle(sync, event("user.deleted"))

        assert result.status == "processed"
        assert await load_account(session_factory, "user_2abc") is None

    async def test_delete_keeps_balance_snapshots(self, sync, session_factory):
        await handle(sync, event("user.created"), msg_id="msg_create")

        await handle(sync, event("user.deleted"), msg_id="msg_delete")

        assert await load_account(session_factory, "user_2abc") is None
        async with session_factory() as session:
            reasons = (
                await session.execute(
                    select(BalanceSnapshot.reason).where(
                        BalanceSnapshot.account_id == "user_2abc"
                    )
                )
            ).scalars().all()
        assert reasons == ["welcome_grant"]

    async def test_unknown_event_is_ignored(self, sync):
        result = await handle(sync, event("session.created"))
        assert result.status == "ignored"
        assert result.event_type == "session.created"


class TestDeliveryFailures:
    async def test_bad_signature_claims_nothing(self, sync, fake_redis, session_factory):
        payload = event("user.created")
        headers = signed_headers(payload)
        headers[SIGNATURE_HEADER] = "v1,AAAA"

        with pytest.raises(SignatureVerificationError):
            await sync.handle_webhook(payload, headers, secret=SECRET)

        assert fake_redis.values == {}
        assert await load_account(session_factory, "user_2abc") is None

    async def test_redis_down(self, db_session, redis_down, session_factory):
        sync = IdentitySync(db_session, redis_down)

        with pytest.raises(UpstreamError):
            await handle(sync, event("user.created"))

        assert await load_account(session_factory, "user_2abc") is None
