"""Tests for the pairing coordinator."""
from __future__ import annotations

import unittest

from _fakes import FakePairingProvider, make_handle

from blescanner.log_sink import LogSink
from blescanner.pairing import (
    KnownDevice,
    PairingCoordinator,
    PairingResult,
    ProtectionLevel,
    UnpairingResult,
)


class EnsurePairedTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.log = LogSink()
        self.native = object()
        self.handle = make_handle("AA:01", "Widget", native=self.native)

    async def test_already_bonded_skips_prompt(self) -> None:
        provider = FakePairingProvider(bonded=True)
        ok = await PairingCoordinator(provider, self.log).ensure_paired(self.handle)
        self.assertTrue(ok)
        self.assertEqual(provider.pair_calls, [])
        self.assertIn("already paired", self.log.text)

    async def test_pairs_with_encryption_and_authentication(self) -> None:
        provider = FakePairingProvider()
        ok = await PairingCoordinator(provider, self.log).ensure_paired(self.handle)
        self.assertTrue(ok)
        self.assertEqual(provider.pair_calls, [(self.native, ProtectionLevel.ENCRYPTION_AND_AUTHENTICATION)])

    async def test_concurrently_paired_counts_as_success(self) -> None:
        provider = FakePairingProvider(pair_result=PairingResult.ALREADY_PAIRED)
        self.assertTrue(await PairingCoordinator(provider, self.log).ensure_paired(self.handle))

    async def test_other_outcomes_fail(self) -> None:
        for result in (PairingResult.FAILED, PairingResult.REJECTED, PairingResult.CANCELED):
            with self.subTest(result=result):
                provider = FakePairingProvider(pair_result=result)
                ok = await PairingCoordinator(provider, self.log).ensure_paired(self.handle)
                self.assertFalse(ok)
                self.assertIn(f"Pairing failed: {result.value}", self.log.text)

    async def test_provider_exception_is_a_failure(self) -> None:
        provider = FakePairingProvider()
        provider.pair_error = RuntimeError("dialog dismissed")
        ok = await PairingCoordinator(provider, self.log).ensure_paired(self.handle)
        self.assertFalse(ok)
        self.assertIn("Pairing failed: dialog dismissed", self.log.text)

    async def test_handle_without_native_reference_is_skipped(self) -> None:
        provider = FakePairingProvider()
        ok = await PairingCoordinator(provider, self.log).ensure_paired(make_handle("AA:02"))
        self.assertTrue(ok)
        self.assertEqual(provider.pair_calls, [])


class UnpairTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.log = LogSink()

    async def test_unpairs_bonded_native_device(self) -> None:
        native = object()
        provider = FakePairingProvider(bonded=True)
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01", "Widget", native=native))
        self.assertEqual(provider.unpair_calls, [native])
        self.assertEqual(provider.enumerations, 0)
        self.assertIn("Device Widget unpaired successfully.", self.log.text)

    async def test_not_bonded_is_idempotent(self) -> None:
        provider = FakePairingProvider(bonded=False)
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01", "Widget", native=object()))
        self.assertEqual(provider.unpair_calls, [])
        self.assertIn("Device Widget was not paired.", self.log.text)

    async def test_unresolvable_device_is_logged(self) -> None:
        provider = FakePairingProvider(bonded=True, known=[KnownDevice("BB:02", "Other", native=object())])
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01", "Widget"))
        self.assertEqual(provider.unpair_calls, [])
        self.assertIn("Could not find matching device", self.log.text)

    async def test_resolves_by_name_from_enumeration(self) -> None:
        native = object()
        provider = FakePairingProvider(bonded=True, known=[KnownDevice("BluetoothLE#xyz", "Widget", native=native)])
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01", "Widget"))
        self.assertEqual(provider.unpair_calls, [native])

    async def test_resolves_by_identifier_substring(self) -> None:
        native = object()
        known = [KnownDevice("BluetoothLE#BluetoothLE00:11-aa:01", None, native=native)]
        provider = FakePairingProvider(bonded=True, known=known)
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01"))
        self.assertEqual(provider.unpair_calls, [native])

    async def test_already_unpaired_result_is_success(self) -> None:
        provider = FakePairingProvider(bonded=True, unpair_result=UnpairingResult.ALREADY_UNPAIRED)
        await PairingCoordinator(provider, self.log).unpair(make_handle("AA:01", "Widget", native=object()))
        self.assertIn("unpaired successfully", self.log.text)

    async def test_failures_never_raise(self) -> None:
        provider = FakePairingProvider(bonded=True, unpair_result=UnpairingResult.FAILED)
        coordinator = PairingCoordinator(provider, self.log)
        await coordinator.unpair(make_handle("AA:01", native=object()))
        self.assertIn("Unpair failed: failed", self.log.text)

        provider.unpair_error = RuntimeError("access denied")
        await coordinator.unpair(make_handle("AA:01", native=object()))
        self.assertIn("Unpair error: access denied", self.log.text)


if __name__ == "__main__":
    unittest.main()
