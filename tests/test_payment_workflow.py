#!/usr/bin/env python3
"""
Payment Submission Workflow Tests

Tests for proof-of-payment handling:
- Image sniffing and data URI encoding
- Proof sources (memory and file)
- Submit proof then reconcile
- Failed uploads leave the bill payable
"""

import pytest
import base64
import sys
import os
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from subscription.bill_lifecycle import BillPhase, find_current_bill, compute_bill_phase
from subscription.exceptions import ValidationError, ProcessingError, ServerRejection
from subscription.models import BillStatus
from subscription.payment_workflow import (
    MAX_PROOF_BYTES,
    PaymentSubmissionWorkflow,
    encode_proof,
    sniff_image_type,
)
from subscription.proof_source import BytesProofSource, FileProofSource, ProofOfPaymentSource
from subscription.reconciliation import ReconciliationEngine
from tests.factories import PNG_BYTES, JPEG_BYTES, make_bill, make_payload, details


DETAILS = ReconciliationEngine.DETAILS_PATH
SUBMIT = PaymentSubmissionWorkflow.SUBMIT_PROOF_PATH
PAY = PaymentSubmissionWorkflow.PAY_PATH


# ============================================================================
# ENCODING
# ============================================================================

class TestImageSniffing:
    """Tests for sniff_image_type"""

    @pytest.mark.parametrize("data,expected", [
        (JPEG_BYTES, "image/jpeg"),
        (PNG_BYTES, "image/png"),
        (b"GIF89a" + b"\x00" * 10, "image/gif"),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"\x00\x00\x00\x18ftypheic\x00\x00", "image/heic"),
        (b"%PDF-1.7", None),
        (b"", None),
    ])
    def test_formats(self, data, expected):
        """Test supported formats are recognised by their magic bytes"""
        assert sniff_image_type(data) == expected


class TestEncodeProof:
    """Tests for encode_proof"""

    def test_data_uri(self):
        """Test the encoding is a data URI carrying the original bytes"""
        encoded = encode_proof(PNG_BYTES)
        prefix = "data:image/png;base64,"
        assert encoded.startswith(prefix)
        assert base64.b64decode(encoded[len(prefix):]) == PNG_BYTES

    def test_empty_rejected(self):
        """Test empty bytes cannot be encoded"""
        with pytest.raises(ProcessingError):
            encode_proof(b"")

    def test_not_an_image_rejected(self):
        """Test non-image bytes cannot be encoded"""
        with pytest.raises(ProcessingError, match="not a supported image"):
            encode_proof(b"hello world, definitely a receipt")

    def test_too_large_rejected(self):
        """Test oversized images are refused"""
        with pytest.raises(ProcessingError, match="too large"):
            encode_proof(JPEG_BYTES + b"\x00" * MAX_PROOF_BYTES)


class TestProofSources:
    """Tests for proof sources"""

    @pytest.mark.asyncio
    async def test_bytes_source(self):
        """Test in-memory bytes are returned as given"""
        assert await BytesProofSource(JPEG_BYTES).read_bytes() == JPEG_BYTES

    @pytest.mark.asyncio
    async def test_file_source(self, temp_dir):
        """Test an image file is read from disk"""
        path = temp_dir / "receipt.png"
        path.write_bytes(PNG_BYTES)
        assert await FileProofSource(path).read_bytes() == PNG_BYTES

    @pytest.mark.asyncio
    async def test_missing_file_is_processing_error(self, payments, temp_dir):
        """Test an unreadable file surfaces as ProcessingError"""
        with pytest.raises(ProcessingError, match="Could not read"):
            await payments.encode_source(FileProofSource(temp_dir / "missing.jpg"))

    @pytest.mark.asyncio
    async def test_source_failure_is_processing_error(self, session, payments):
        """Test a source that cannot deliver bytes stops the submission"""
        source = MagicMock(spec=ProofOfPaymentSource)
        source.read_bytes = AsyncMock(side_effect=OSError("permission denied"))

        with pytest.raises(ProcessingError, match="permission denied"):
            await payments.submit_proof("bill-1", source)
        source.read_bytes.assert_awaited_once()
        assert session.calls == []


# ============================================================================
# SUBMIT PROOF
# ============================================================================

class TestSubmitProof:
    """Tests for PaymentSubmissionWorkflow.submit_proof"""

    @pytest.mark.asyncio
    async def test_missing_proof_makes_no_call(self, session, payments):
        """Test submitting without proof fails before the network"""
        with pytest.raises(ValidationError, match="proof required"):
            await payments.submit_proof("bill-1", None)
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_missing_bill_id(self, session, payments):
        """Test a bill id is required"""
        with pytest.raises(ValidationError):
            await payments.submit_proof("", BytesProofSource(PNG_BYTES))
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_unreadable_image_makes_no_call(self, session, payments):
        """Test an image that cannot be encoded never reaches the server"""
        with pytest.raises(ProcessingError):
            await payments.submit_proof("bill-1", BytesProofSource(b"not an image"))
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_submit_then_reconcile(self, session, engine, payments):
        """Test the bill shows PendingVerification only after the server accepts"""
        await engine.refresh()
        due_bill = find_current_bill(engine.snapshot.history).due_bill
        assert due_bill.id == "bill-1"

        def accept(body):
            session.respond("GET", DETAILS, details(make_payload(history=[
                make_bill(status="Pending Verification"),
            ])))
            return {"message": "Proof submitted"}

        session.respond("POST", SUBMIT, accept)
        await payments.submit_proof("bill-1", BytesProofSource(JPEG_BYTES))

        sent = session.calls_to("POST", SUBMIT)[0]
        assert sent["billId"] == "bill-1"
        assert sent["proofOfPaymentBase64"].startswith("data:image/jpeg;base64,")

        bill = engine.snapshot.find_bill("bill-1")
        assert bill.status == BillStatus.PENDING_VERIFICATION
        assert compute_bill_phase(bill, engine.snapshot.renewal_date) == BillPhase.PENDING_VERIFICATION

    @pytest.mark.asyncio
    async def test_rejected_upload_leaves_bill_payable(self, session, engine, payments):
        """Test a refused upload does not change the snapshot"""
        await engine.refresh()
        before = engine.snapshot

        session.respond("POST", SUBMIT, ServerRejection("Bill not found", status_code=404))
        with pytest.raises(ServerRejection, match="Bill not found"):
            await payments.submit_proof("bill-1", BytesProofSource(PNG_BYTES))

        assert engine.snapshot is before
        assert engine.snapshot.find_bill("bill-1").status == BillStatus.DUE
        assert len(session.calls_to("GET", DETAILS)) == 1


# ============================================================================
# PAY BILL
# ============================================================================

class TestPayBill:
    """Tests for PaymentSubmissionWorkflow.pay_bill"""

    @pytest.mark.asyncio
    async def test_without_proof_omits_field(self, session, payments):
        """Test a cash payment sends only the bill id"""
        session.respond("POST", PAY, {"message": "Payment successful"})
        response = await payments.pay_bill("bill-1")

        assert response == {"message": "Payment successful"}
        assert session.calls_to("POST", PAY) == [{"billId": "bill-1"}]

    @pytest.mark.asyncio
    async def test_with_proof(self, session, payments):
        """Test proof is encoded into the request"""
        await payments.pay_bill("bill-1", BytesProofSource(PNG_BYTES))
        sent = session.calls_to("POST", PAY)[0]
        assert sent["proofOfPayment"].startswith("data:image/png;base64,")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
