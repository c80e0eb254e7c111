"""
Tests for models.py - envelope and bundle invariants, descriptors.
"""
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.system_program import TransferParams, transfer

from volume_bundler.bundle_assembler import compile_envelope
from volume_bundler.constants import NATIVE_MINT
from volume_bundler.models import Bundle, BundleResult, TransactionEnvelope, VenueKind


def _envelope(blockhash, payer=None):
    payer = payer or Keypair()
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))
    return compile_envelope(payer.pubkey(), [ix], ["fund"], [payer], blockhash)


class TestBundle:
    """Tests for Bundle validation."""

    def test_valid_bundle(self):
        blockhash = Hash.new_unique()
        envelopes = [_envelope(blockhash) for _ in range(3)]

        bundle = Bundle(envelopes=envelopes, blockhash=blockhash)

        assert bundle.funding is envelopes[0]
        assert bundle.swaps == envelopes[1:]
        assert bundle.encoded() == [e.base64 for e in envelopes]

    def test_empty_bundle(self):
        with pytest.raises(ValueError, match="at least one"):
            Bundle(envelopes=[], blockhash=Hash.new_unique())

    def test_too_many_envelopes(self):
        blockhash = Hash.new_unique()

        with pytest.raises(ValueError, match="max is 5"):
            Bundle(envelopes=[_envelope(blockhash) for _ in range(6)], blockhash=blockhash)

    def test_mixed_blockhashes_rejected(self):
        blockhash = Hash.new_unique()
        envelopes = [_envelope(blockhash), _envelope(Hash.new_unique())]

        with pytest.raises(ValueError, match="blockhash"):
            Bundle(envelopes=envelopes, blockhash=blockhash)


class TestTransactionEnvelope:
    """Tests for TransactionEnvelope."""

    def test_steps_must_match_instructions(self):
        envelope = _envelope(Hash.new_unique())

        with pytest.raises(ValueError, match="steps"):
            TransactionEnvelope(
                payer=envelope.payer,
                instructions=envelope.instructions,
                steps=[],
                blockhash=envelope.blockhash,
                signers=envelope.signers,
                transaction=envelope.transaction,
            )

    def test_signature_is_first_signature(self):
        envelope = _envelope(Hash.new_unique())

        assert envelope.signature == str(envelope.transaction.signatures[0])
        assert envelope.index_of("fund") == 0


class TestDescriptors:

    def test_token_mint_ignores_native_side(self, cpmm_descriptor, curve_descriptor, orderbook_descriptor, token_mint):
        for descriptor in (cpmm_descriptor, curve_descriptor, orderbook_descriptor):
            assert descriptor.token_mint == token_mint
            assert descriptor.token_mint != NATIVE_MINT

    def test_kinds(self, cpmm_descriptor, curve_descriptor, orderbook_descriptor):
        assert cpmm_descriptor.kind == VenueKind.CONSTANT_PRODUCT_AMM
        assert curve_descriptor.kind == VenueKind.CURVE_AMM
        assert orderbook_descriptor.kind == VenueKind.ORDER_BOOK

    def test_bundle_result_landed(self):
        assert BundleResult(bundle_id="b", status="landed").landed
        assert not BundleResult(bundle_id="b", status="simulated").landed
