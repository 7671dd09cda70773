import asyncio
import json

import pytest
from cryptography.exceptions import UnsupportedAlgorithm

from proof_of_gift.errors import CryptoUnavailable, KeyUnsealFailed
from proof_of_gift.keys import KEYPAIR_NAME, FileKeyStore, InMemoryKeyStore, KeyManager
from proof_of_gift.keys import manager as manager_module
from proof_of_gift.keys.sealing import SEALED_PREFIX


def test_keypair_created_once_and_reused() -> None:
    async def run() -> None:
        store = InMemoryKeyStore()
        manager = KeyManager(store)
        first = await manager.get_or_create_keypair()
        second = await manager.get_or_create_keypair()
        assert first is second
        assert KEYPAIR_NAME in store.values

        reloaded = await KeyManager(store).get_or_create_keypair()
        assert reloaded.public_bytes() == first.public_bytes()
        assert reloaded.private_bytes() == first.private_bytes()

    asyncio.run(run())


def test_concurrent_first_calls_share_one_keypair() -> None:
    async def run() -> None:
        store = InMemoryKeyStore()
        managers = [KeyManager(store) for _ in range(4)]
        pairs = await asyncio.gather(*(m.get_or_create_keypair() for m in managers for _ in range(3)))
        assert len({pair.public_bytes() for pair in pairs}) == 1

    asyncio.run(run())


def test_losing_writer_adopts_stored_keypair() -> None:
    async def run() -> None:
        store = InMemoryKeyStore()
        winner = await KeyManager(store).get_or_create_keypair()

        class RacingStore(InMemoryKeyStore):
            async def get(self, name):
                return None

            async def set_if_absent(self, name, value):
                return await store.set_if_absent(name, value)

        loser = await KeyManager(RacingStore()).get_or_create_keypair()
        assert loser.public_bytes() == winner.public_bytes()

    asyncio.run(run())


def test_private_key_sealed_with_passphrase() -> None:
    async def run() -> None:
        store = InMemoryKeyStore()
        created = await KeyManager(store, passphrase="correct horse").get_or_create_keypair()
        document = json.loads(store.values[KEYPAIR_NAME])
        assert document["private_key"].startswith(SEALED_PREFIX)

        reopened = await KeyManager(store, passphrase="correct horse").get_or_create_keypair()
        assert reopened.private_bytes() == created.private_bytes()

        with pytest.raises(KeyUnsealFailed):
            await KeyManager(store, passphrase="wrong").get_or_create_keypair()
        with pytest.raises(KeyUnsealFailed):
            await KeyManager(store).get_or_create_keypair()

    asyncio.run(run())


def test_corrupt_key_document_rejected() -> None:
    async def run() -> None:
        store = InMemoryKeyStore()
        store.values[KEYPAIR_NAME] = "{not json"
        with pytest.raises(KeyUnsealFailed):
            await KeyManager(store).get_or_create_keypair()

    asyncio.run(run())


def test_missing_signing_primitive_aborts(monkeypatch) -> None:
    class NoEd25519:
        @staticmethod
        def generate():
            raise UnsupportedAlgorithm("ed25519 unavailable")

    monkeypatch.setattr(manager_module, "Ed25519PrivateKey", NoEd25519)

    async def run() -> None:
        store = InMemoryKeyStore()
        with pytest.raises(CryptoUnavailable):
            await KeyManager(store).get_or_create_keypair()
        assert store.values == {}

    asyncio.run(run())


def test_file_store_first_writer_wins(tmp_path) -> None:
    async def run() -> None:
        store = FileKeyStore(tmp_path / "keys")
        assert await store.get("signing_keypair") is None
        assert await store.set_if_absent("signing_keypair", "first") == "first"
        assert await store.set_if_absent("signing_keypair", "second") == "first"
        assert await store.get("signing_keypair") == "first"
        assert [p.name for p in (tmp_path / "keys").iterdir()] == ["signing_keypair.json"]

        manager_a = KeyManager(FileKeyStore(tmp_path / "pair"))
        manager_b = KeyManager(FileKeyStore(tmp_path / "pair"))
        a, b = await asyncio.gather(manager_a.get_or_create_keypair(), manager_b.get_or_create_keypair())
        assert a.public_bytes() == b.public_bytes()

    asyncio.run(run())
